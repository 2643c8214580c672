"""Release seam between approvals and the external executor."""
