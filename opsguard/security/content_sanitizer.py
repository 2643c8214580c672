"""
Content sanitizer for operation text.

Incoming content is scanned for prompt-injection threats (instruction
overrides, system prompt extraction, command execution, credential
extraction, encoded payloads, hidden text, URL injection, exfiltration,
jailbreaks, role manipulation). Outgoing content is scanned for credential
leaks and redacted. Results carry threat types and positions, never the
matched text.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Pattern, Tuple

from opsguard.domain.models.operation import Severity


class ThreatType(str, Enum):
    INSTRUCTION_INJECTION = "instruction_injection"
    SYSTEM_PROMPT_EXTRACTION = "system_prompt_extraction"
    COMMAND_EXECUTION = "command_execution"
    CREDENTIAL_EXTRACTION = "credential_extraction"
    ENCODED_PAYLOAD = "encoded_payload"
    HIDDEN_TEXT = "hidden_text"
    URL_INJECTION = "url_injection"
    DATA_EXFILTRATION = "data_exfiltration"
    JAILBREAK_ATTEMPT = "jailbreak_attempt"
    ROLE_MANIPULATION = "role_manipulation"


@dataclass(frozen=True)
class ThreatPattern:
    pattern: Pattern[str]
    type: ThreatType
    severity: Severity
    description: str


@dataclass(frozen=True)
class ThreatDetection:
    type: ThreatType
    severity: Severity
    description: str
    position: int
    length: int


@dataclass(frozen=True)
class SanitizationResult:
    safe: bool
    sanitized: str
    threats: Tuple[ThreatDetection, ...]
    confidence: float

    @property
    def critical_threats(self) -> List[ThreatDetection]:
        return [t for t in self.threats if t.severity == Severity.CRITICAL]

    @property
    def threat_types(self) -> List[str]:
        """Distinct threat types in first-seen order."""
        return list(dict.fromkeys(t.type.value for t in self.threats))


@dataclass(frozen=True)
class OutboundCheck:
    safe: bool
    sanitized: str
    # "<type>: <label>" only; the leaked value never appears here.
    leaks: Tuple[str, ...] = field(default_factory=tuple)


def _threat(regex: str, type: ThreatType, severity: Severity, description: str, flags: int = re.I) -> ThreatPattern:
    return ThreatPattern(re.compile(regex, flags), type, severity, description)


INJECTION_PATTERNS: List[ThreatPattern] = [
    # Instruction injection
    _threat(
        r"ignore\s+(all\s+)?(previous|prior|above|your)\s+(instructions?|rules?|guidelines?|prompts?)",
        ThreatType.INSTRUCTION_INJECTION, Severity.CRITICAL, "Attempt to override system instructions",
    ),
    _threat(
        r"disregard\s+(everything|all|the|what)\s+(above|before|i\s+said|was\s+said)",
        ThreatType.INSTRUCTION_INJECTION, Severity.CRITICAL, "Attempt to disregard previous context",
    ),
    _threat(
        r"forget\s+(everything|all|what)\s+(you|i|we)\s+(know|learned|said)",
        ThreatType.INSTRUCTION_INJECTION, Severity.HIGH, "Attempt to reset agent memory",
    ),
    _threat(
        r"new\s+(instructions?|rules?|guidelines?|persona|role|identity)\s*:",
        ThreatType.INSTRUCTION_INJECTION, Severity.CRITICAL, "Attempt to inject new instructions",
    ),
    _threat(
        r"you\s+(are|will)\s+(now|be|become|act\s+as)\s+(a|an|my)\b",
        ThreatType.ROLE_MANIPULATION, Severity.HIGH, "Attempt to change agent role or persona",
    ),
    _threat(
        r"from\s+now\s+on[,\s]+(you|ignore|follow|obey)",
        ThreatType.INSTRUCTION_INJECTION, Severity.HIGH, "Attempt to modify future behavior",
    ),
    # System prompt extraction
    _threat(
        r"what\s+(is|are)\s+(your|the)\s+(system|initial|original|full)\s+(prompt|instructions?|rules?)",
        ThreatType.SYSTEM_PROMPT_EXTRACTION, Severity.HIGH, "Attempt to extract system prompt",
    ),
    _threat(
        r"(repeat|show|display|print|output|reveal)\s+(your|the)\s+(system|initial|original|full|complete)",
        ThreatType.SYSTEM_PROMPT_EXTRACTION, Severity.HIGH, "Attempt to reveal system instructions",
    ),
    _threat(
        r"what\s+(were\s+you|are\s+you)\s+(told|instructed|programmed)",
        ThreatType.SYSTEM_PROMPT_EXTRACTION, Severity.MEDIUM, "Attempt to elicit agent instructions",
    ),
    _threat(
        r"above\s+(this\s+)?(message|text|prompt)\s+(is|contains|has)",
        ThreatType.SYSTEM_PROMPT_EXTRACTION, Severity.MEDIUM, "Reference to system context",
    ),
    # Command execution
    _threat(
        r"\b(run|execute|eval|exec)\s*(this|the|a|following)?\s*(command|script|code|shell)",
        ThreatType.COMMAND_EXECUTION, Severity.CRITICAL, "Attempt to execute commands",
    ),
    _threat(r"\$\(\s*[^)]+\s*\)", ThreatType.COMMAND_EXECUTION, Severity.CRITICAL, "Shell command substitution", flags=0),
    _threat(r"`[^`]{3,}`", ThreatType.COMMAND_EXECUTION, Severity.HIGH, "Backtick command pattern", flags=0),
    _threat(
        r";\s*(rm|del|curl|wget|nc|bash|sh|python|node|eval)\s",
        ThreatType.COMMAND_EXECUTION, Severity.CRITICAL, "Command injection via semicolon",
    ),
    _threat(r"\|\s*(bash|sh|python|node|nc|curl)\b", ThreatType.COMMAND_EXECUTION, Severity.CRITICAL, "Pipe to shell command"),
    # Credential extraction
    _threat(
        r"(show|display|print|output|reveal|tell\s+me)\s+(your|the|my|all)?\s*"
        r"(api[_\s-]?keys?|secrets?|tokens?|credentials?|passwords?)",
        ThreatType.CREDENTIAL_EXTRACTION, Severity.CRITICAL, "Attempt to extract credentials",
    ),
    _threat(
        r"(read|cat|type|get|fetch|load)\s+\S*(\.env|config\.(json|yml|yaml)|secrets?|credentials?)",
        ThreatType.CREDENTIAL_EXTRACTION, Severity.CRITICAL, "Attempt to read config files",
    ),
    _threat(
        r"process\.env\[?['\"]?\w+['\"]?\]?",
        ThreatType.CREDENTIAL_EXTRACTION, Severity.HIGH, "Environment variable access",
    ),
    _threat(
        r"/(home|users?)/[^/]+/\.(ssh|gnupg|config|aws|kube)",
        ThreatType.CREDENTIAL_EXTRACTION, Severity.CRITICAL, "Access to sensitive directories",
    ),
    # Encoded payloads
    _threat(
        r"base64[:\s]*(decode|encode)?\s*['\"(]?[A-Za-z0-9+/=]{20,}",
        ThreatType.ENCODED_PAYLOAD, Severity.HIGH, "Base64 encoded content",
    ),
    _threat(r"\\x[0-9a-fA-F]{2}(\\x[0-9a-fA-F]{2}){3,}", ThreatType.ENCODED_PAYLOAD, Severity.HIGH, "Hex-encoded payload", flags=0),
    _threat(r"\\u[0-9a-fA-F]{4}(\\u[0-9a-fA-F]{4}){3,}", ThreatType.ENCODED_PAYLOAD, Severity.MEDIUM, "Unicode-encoded payload", flags=0),
    # Hidden text
    _threat("[\u200b-\u200f\u2028-\u202f\u2060-\u206f]", ThreatType.HIDDEN_TEXT, Severity.HIGH, "Zero-width characters", flags=0),
    _threat(
        r"<[^>]*style\s*=\s*[\"'][^\"']*color\s*:\s*(white|#fff|#ffffff|transparent|rgba\([^)]*,\s*0\))",
        ThreatType.HIDDEN_TEXT, Severity.HIGH, "Hidden text via CSS color",
    ),
    _threat(
        r"<[^>]*style\s*=\s*[\"'][^\"']*font-size\s*:\s*0",
        ThreatType.HIDDEN_TEXT, Severity.HIGH, "Hidden text via zero font size",
    ),
    # URL injection
    _threat(
        r"(fetch|get|post|request|call|visit|curl|wget)\s+(https?://\S+|[a-zA-Z0-9-]+\.(com|io|net|org|ai)\b)",
        ThreatType.URL_INJECTION, Severity.MEDIUM, "External URL reference",
    ),
    _threat(r"webhook[:\s]+https?://", ThreatType.URL_INJECTION, Severity.HIGH, "Webhook URL injection"),
    # Data exfiltration
    _threat(
        r"(send|post|upload|share|transmit)\s+(this|the|all|my)\s+(data|information|content|file|message)",
        ThreatType.DATA_EXFILTRATION, Severity.HIGH, "Potential data exfiltration",
    ),
    _threat(
        r"(copy|paste|transfer)\s+(to|into)\s+(clipboard|external|another|remote)",
        ThreatType.DATA_EXFILTRATION, Severity.MEDIUM, "Data transfer attempt",
    ),
    # Jailbreaks
    _threat(
        r"\b(dan|dude|evil|jailbreak|unrestricted)\s*(mode|prompt|version)",
        ThreatType.JAILBREAK_ATTEMPT, Severity.HIGH, "Known jailbreak pattern",
    ),
    _threat(
        r"pretend\s+(you\s+)?(are|can|have|don't\s+have)\s+(no\s+)?(restrictions?|limits?|rules?|guidelines?)",
        ThreatType.JAILBREAK_ATTEMPT, Severity.CRITICAL, "Attempt to bypass restrictions",
    ),
    _threat(
        r"roleplay\s+as\s+(a|an)\s+(unrestricted|unlimited|evil|hacker)",
        ThreatType.JAILBREAK_ATTEMPT, Severity.HIGH, "Roleplay-based jailbreak",
    ),
    _threat(
        r"hypothetically,?\s+(if|what\s+if)\s+(you|there)\s+(were|was|had)\s+(no|zero)",
        ThreatType.JAILBREAK_ATTEMPT, Severity.MEDIUM, "Hypothetical scenario bypass",
    ),
]

# (pattern, type, label). Replacements use the type only.
CREDENTIAL_LEAK_PATTERNS: List[Tuple[Pattern[str], str, str]] = [
    (re.compile(r"sk-ant-[a-zA-Z0-9-]{40,}"), "anthropic_key", "Anthropic API key"),
    (re.compile(r"sk-[a-zA-Z0-9]{20,}"), "openai_key", "OpenAI API key"),
    (re.compile(r"AIza[a-zA-Z0-9_-]{35}"), "google_key", "Google API key"),
    (re.compile(r"ghp_[a-zA-Z0-9]{36}"), "github_token", "GitHub personal access token"),
    (re.compile(r"gho_[a-zA-Z0-9]{36}"), "github_oauth", "GitHub OAuth token"),
    (re.compile(r"xai-[a-zA-Z0-9]{40,}"), "xai_key", "xAI API key"),
    (re.compile(r"xoxb-[a-zA-Z0-9-]+"), "slack_bot", "Slack bot token"),
    (re.compile(r"xoxp-[a-zA-Z0-9-]+"), "slack_user", "Slack user token"),
    (re.compile(r"AKIA[A-Z0-9]{16}"), "aws_access_key", "AWS access key ID"),
    (re.compile(r"-----BEGIN\s+(RSA\s+)?PRIVATE\s+KEY-----"), "rsa_private_key", "RSA private key"),
    (re.compile(r"-----BEGIN\s+EC\s+PRIVATE\s+KEY-----"), "ec_private_key", "EC private key"),
    (re.compile(r"-----BEGIN\s+OPENSSH\s+PRIVATE\s+KEY-----"), "ssh_private_key", "SSH private key"),
    (re.compile(r"mongodb(\+srv)?://\S+"), "mongodb_uri", "MongoDB connection string"),
    (re.compile(r"postgres(ql)?://\S+"), "postgres_uri", "PostgreSQL connection string"),
    (re.compile(r"mysql://\S+"), "mysql_uri", "MySQL connection string"),
    (re.compile(r"redis://\S+"), "redis_uri", "Redis connection string"),
    (re.compile(r"eyJ[a-zA-Z0-9_-]+\.eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"), "jwt_token", "JWT token"),
    (re.compile(r"password\s*[=:]\s*[\"']?[^\s\"']{8,}[\"']?", re.I), "password", "Password in text"),
    (re.compile(r"secret\s*[=:]\s*[\"']?[^\s\"']{8,}[\"']?", re.I), "secret", "Secret in text"),
]

HIDDEN_CHARACTERS = re.compile("[\u200b-\u200f\u2028-\u202f\u2060-\u206f\ufeff]")
CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

SEVERITY_PENALTY = {
    Severity.CRITICAL: 0.4,
    Severity.HIGH: 0.2,
    Severity.MEDIUM: 0.1,
    Severity.LOW: 0.0,
}


class ContentSanitizer:
    """
    Stateless scanner. In strict mode critical and high matches are replaced
    with a [BLOCKED:<type>] marker and medium threats do not make content
    unsafe; outside strict mode nothing is replaced and any threat does.
    """

    def __init__(self, strict: bool = True) -> None:
        self._strict = strict

    def sanitize_incoming(self, content: str) -> SanitizationResult:
        threats = tuple(
            sorted(
                (
                    ThreatDetection(
                        type=p.type,
                        severity=p.severity,
                        description=p.description,
                        position=match.start(),
                        length=match.end() - match.start(),
                    )
                    for p in INJECTION_PATTERNS
                    for match in p.pattern.finditer(content)
                ),
                key=lambda t: t.position,
            )
        )
        sanitized = self._neutralize(content, threats) if self._strict else content
        sanitized = remove_hidden_characters(sanitized)

        penalty = sum(SEVERITY_PENALTY[t.severity] for t in threats)
        blocking = any(t.severity.rank >= Severity.HIGH.rank for t in threats)
        medium = any(t.severity == Severity.MEDIUM for t in threats)
        return SanitizationResult(
            safe=not blocking and (self._strict or not medium),
            sanitized=sanitized,
            threats=threats,
            confidence=round(max(0.0, 1.0 - penalty), 2),
        )

    def sanitize_outgoing(self, content: str) -> OutboundCheck:
        leaks: List[str] = []
        sanitized = content
        for pattern, leak_type, label in CREDENTIAL_LEAK_PATTERNS:
            if pattern.search(sanitized):
                leaks.append(f"{leak_type}: {label}")
                sanitized = pattern.sub(f"[REDACTED:{leak_type}]", sanitized)
        return OutboundCheck(safe=not leaks, sanitized=sanitized, leaks=tuple(leaks))

    @staticmethod
    def _neutralize(content: str, threats: Tuple[ThreatDetection, ...]) -> str:
        result = content
        # Right to left so earlier positions stay valid; overlapping matches are skipped.
        boundary = len(content) + 1
        for threat in sorted(threats, key=lambda t: t.position, reverse=True):
            if threat.severity.rank < Severity.HIGH.rank:
                continue
            end = threat.position + threat.length
            if end > boundary:
                continue
            result = result[: threat.position] + f"[BLOCKED:{threat.type.value}]" + result[end:]
            boundary = threat.position
        return result


def remove_hidden_characters(content: str) -> str:
    """Strip zero-width characters and control characters other than newline and tab."""
    return CONTROL_CHARACTERS.sub("", HIDDEN_CHARACTERS.sub("", content))
