"""Pure anomaly classifiers over operation content, file paths and URLs. They return findings; recording is the detector's job."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple
from urllib.parse import urlparse

from opsguard.domain.models.operation import Severity
from opsguard.security.content_sanitizer import ContentSanitizer, SanitizationResult


class AnomalyType(str, Enum):
    RATE_SPIKE = "rate_spike"
    UNUSUAL_ACCESS = "unusual_access"
    CREDENTIAL_EXPOSURE = "credential_exposure"
    INJECTION_ATTEMPT = "injection_attempt"
    NETWORK_ANOMALY = "network_anomaly"
    AUTH_FAILURE = "auth_failure"
    POLICY_VIOLATION = "policy_violation"
    BEHAVIORAL_DEVIATION = "behavioral_deviation"
    SELF_MODIFICATION = "self_modification"
    RECURSIVE_PROMPT = "recursive_prompt"
    EXFILTRATION_ATTEMPT = "exfiltration_attempt"
    PRIVILEGE_ESCALATION = "privilege_escalation"


class AnomalyAction(str, Enum):
    LOGGED = "logged"
    WARNED = "warned"
    BLOCKED = "blocked"
    PAUSED = "paused"
    QUARANTINED = "quarantined"


@dataclass(frozen=True)
class AnomalyFinding:
    type: AnomalyType
    severity: Severity
    description: str
    action: AnomalyAction
    context: Dict[str, Any] = field(default_factory=dict)


SELF_MODIFICATION_PATTERNS = [
    re.compile(r"disable\s+(safety|security|sandbox|approval)", re.I),
    re.compile(r"turn\s+off\s+(protection|sandbox|approval)", re.I),
    re.compile(r"bypass\s+(restriction|limit|filter)", re.I),
    re.compile(r"remove\s+(guardrail|safety|limit)", re.I),
    re.compile(r"exec\.approvals?\.(set|off|disable)", re.I),
    re.compile(r"sandbox\s*[=:]\s*[\"']?(off|false|disabled)", re.I),
    re.compile(r"no-new-privileges\s*[=:]\s*[\"']?false", re.I),
]

EXFILTRATION_PATTERNS = [
    re.compile(r"(curl|wget|fetch|post|send)\s+.*\.(env|config|secret|key)", re.I),
    re.compile(r"upload\s+.*\.(pem|key|secret|env)", re.I),
    re.compile(r"(base64|encode)\s+.*\s+(send|post|upload)", re.I),
    re.compile(r"webhook[:\s]+https?://(?!localhost|127\.0\.0\.1)", re.I),
    re.compile(r"ngrok|serveo|localtunnel|cloudflare.*tunnel", re.I),
]

# (pattern, label). Only the label is ever reported.
CREDENTIAL_PATTERNS: List[Tuple[Pattern[str], str]] = [
    (re.compile(r"sk-ant-[a-zA-Z0-9-]{40,}"), "Anthropic API key"),
    (re.compile(r"sk-[a-zA-Z0-9]{20,}"), "OpenAI API key"),
    (re.compile(r"ghp_[a-zA-Z0-9]{36}"), "GitHub token"),
    (re.compile(r"AKIA[0-9A-Z]{16}"), "AWS access key"),
    (re.compile(r"-----BEGIN\s+(RSA\s+)?PRIVATE\s+KEY-----"), "Private key"),
]

RECURSIVE_PATTERNS = [
    re.compile(r"repeat\s+(this|the\s+above)\s+\d+\s+times", re.I),
    re.compile(r"call\s+yourself", re.I),
    re.compile(r"infinite\s+loop", re.I),
    re.compile(r"while\s*\(\s*true\s*\)", re.I),
    re.compile(r"for\s*\(\s*;\s*;\s*\)", re.I),
]

DANGEROUS_PATHS = [
    re.compile(r"/etc/passwd"),
    re.compile(r"/etc/shadow"),
    re.compile(r"/etc/sudoers"),
    re.compile(r"\.ssh/(id_|known_hosts|authorized_keys)"),
    re.compile(r"\.gnupg/"),
    re.compile(r"\.aws/(credentials|config)"),
    re.compile(r"\.kube/config"),
    re.compile(r"\.docker/config"),
    re.compile(r"\.npmrc"),
    re.compile(r"\.pypirc"),
    re.compile(r"\.netrc"),
    re.compile(r"\.env(\.|$)"),
    re.compile(r"secrets?\.(json|ya?ml|toml)"),
    re.compile(r"credentials?\.(json|ya?ml|toml)"),
]

SUSPICIOUS_DOMAINS = [
    re.compile(p, re.I)
    for p in (
        r"ngrok",
        r"serveo",
        r"localtunnel",
        r"requestbin",
        r"webhook\.site",
        r"pipedream",
        r"burpcollaborator",
        r"interact\.sh",
        r"oast",
    )
]

DEFAULT_KNOWN_DOMAINS = frozenset({"api.anthropic.com", "api.openai.com"})
DEFAULT_KNOWN_PATHS = ("/home/user/workspace", "/tmp")


def _first_match(patterns: Iterable[Pattern[str]], text: str) -> Optional[Pattern[str]]:
    for pattern in patterns:
        if pattern.search(text):
            return pattern
    return None


def check_self_modification(content: str) -> Optional[AnomalyFinding]:
    pattern = _first_match(SELF_MODIFICATION_PATTERNS, content)
    if pattern is None:
        return None
    return AnomalyFinding(
        type=AnomalyType.SELF_MODIFICATION,
        severity=Severity.CRITICAL,
        description="Self-modification attempt detected",
        action=AnomalyAction.BLOCKED,
        context={"pattern": pattern.pattern},
    )


def check_exfiltration(content: str) -> Optional[AnomalyFinding]:
    pattern = _first_match(EXFILTRATION_PATTERNS, content)
    if pattern is None:
        return None
    return AnomalyFinding(
        type=AnomalyType.EXFILTRATION_ATTEMPT,
        severity=Severity.HIGH,
        description="Potential data exfiltration attempt detected",
        action=AnomalyAction.BLOCKED,
        context={"pattern": pattern.pattern},
    )


def check_credential_exposure(content: str) -> Optional[AnomalyFinding]:
    for pattern, label in CREDENTIAL_PATTERNS:
        if pattern.search(content):
            return AnomalyFinding(
                type=AnomalyType.CREDENTIAL_EXPOSURE,
                severity=Severity.HIGH,
                description=f"Credential exposure detected: {label}",
                action=AnomalyAction.BLOCKED,
                context={"credential_type": label},
            )
    return None


def check_recursive_pattern(content: str) -> Optional[AnomalyFinding]:
    pattern = _first_match(RECURSIVE_PATTERNS, content)
    if pattern is None:
        return None
    return AnomalyFinding(
        type=AnomalyType.RECURSIVE_PROMPT,
        severity=Severity.MEDIUM,
        description="Recursive pattern detected",
        action=AnomalyAction.BLOCKED,
        context={"pattern": pattern.pattern},
    )


def check_injection(sanitization: SanitizationResult) -> Optional[AnomalyFinding]:
    critical = sanitization.critical_threats
    if not critical:
        return None
    types = list(dict.fromkeys(t.type.value for t in critical))
    return AnomalyFinding(
        type=AnomalyType.INJECTION_ATTEMPT,
        severity=Severity.CRITICAL,
        description=f"Content contains critical security threats: {', '.join(types)}",
        action=AnomalyAction.BLOCKED,
        context={"threat_types": types, "confidence": sanitization.confidence},
    )


def classify_content(
    content: str,
    sanitization: Optional[SanitizationResult] = None,
) -> List[AnomalyFinding]:
    """Run every content classifier; one finding per classifier at most."""
    if sanitization is None:
        sanitization = ContentSanitizer().sanitize_incoming(content)
    checks = (
        check_self_modification,
        check_exfiltration,
        check_credential_exposure,
        check_recursive_pattern,
    )
    findings = [check_injection(sanitization)]
    findings.extend(check(content) for check in checks)
    return [f for f in findings if f is not None]


def classify_file_access(
    file_path: str,
    known_paths: Iterable[str] = DEFAULT_KNOWN_PATHS,
) -> Optional[AnomalyFinding]:
    pattern = _first_match(DANGEROUS_PATHS, file_path)
    if pattern is not None:
        return AnomalyFinding(
            type=AnomalyType.UNUSUAL_ACCESS,
            severity=Severity.HIGH,
            description=f"Access to sensitive file path: {file_path}",
            action=AnomalyAction.BLOCKED,
            context={"file_path": file_path, "pattern": pattern.pattern},
        )
    if not any(file_path.startswith(known) for known in known_paths):
        return AnomalyFinding(
            type=AnomalyType.UNUSUAL_ACCESS,
            severity=Severity.MEDIUM,
            description=f"Access to unknown file path: {file_path}",
            action=AnomalyAction.WARNED,
            context={"file_path": file_path},
        )
    return None


def classify_network_request(
    url: str,
    method: str = "GET",
    known_domains: Iterable[str] = DEFAULT_KNOWN_DOMAINS,
) -> Optional[AnomalyFinding]:
    try:
        domain = urlparse(url).hostname
    except ValueError:
        domain = None
    if not domain:
        return AnomalyFinding(
            type=AnomalyType.NETWORK_ANOMALY,
            severity=Severity.MEDIUM,
            description="Invalid URL format",
            action=AnomalyAction.BLOCKED,
            context={"method": method},
        )
    if domain in set(known_domains):
        return None
    suspicious = _first_match(SUSPICIOUS_DOMAINS, domain) is not None
    return AnomalyFinding(
        type=AnomalyType.NETWORK_ANOMALY,
        severity=Severity.HIGH if suspicious else Severity.MEDIUM,
        description=f"Request to unknown domain: {domain}",
        action=AnomalyAction.BLOCKED if suspicious else AnomalyAction.WARNED,
        context={"domain": domain, "method": method},
    )
