"""Client-side triage mutation orchestration for the TriageQueue API."""
