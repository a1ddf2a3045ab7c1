"""Assessment engines - selection, grading, mastery, proctoring, remediation."""
