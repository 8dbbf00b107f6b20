class Telemetry:
    """One record per initialization attempt, in attempt order."""

    def __init__(self):
        self.attempts = []

    def log_attempt(self, idx: int, rec: dict):
        rec["attempt_idx"] = idx
        self.attempts.append(rec)

    def log_result(self, idx: int, res) -> dict:
        """Record an InitResult: outcome, point count and per-stage evidence."""
        rec = {
            "valid": bool(res.valid),
            "reason": str(getattr(res.reason, "value", res.reason)),
            "num_matches": int(res.matches.shape[0]),
            "num_points": res.num_points,
            "stages": dict(res.stages),
        }
        if res.pose is not None:
            rec["R"] = res.pose.R.tolist()
            rec["t"] = res.pose.t.tolist()
        self.log_attempt(idx, rec)
        return rec

    def last(self) -> dict | None:
        return self.attempts[-1] if self.attempts else None

    def success_rate(self) -> float:
        if not self.attempts:
            return 0.0
        return sum(1 for r in self.attempts if r.get("valid")) / len(self.attempts)
