import logging
from typing import Any
from pathlib import Path

import json

from tandem.model.tables import TrialTable
from tandem.alignment.matcher import MatchResult
from tandem.alignment.drift import DriftResult
from tandem.session import SessionResult, SessionStatus


class SessionFile():
    """Write and read one processed session as a JSON document.

    Trial tables are written column-wise, with null for missing values.
    Decoded hardware trials and control trials stay in memory and are not written.
    Writing and then reading a session should recover its status, tables, match, and drift summary.
    """

    def __init__(self, file_name: str) -> None:
        self.file_name = file_name

    def write(self, result: SessionResult) -> None:
        session_dict = self.dump_session(result)
        Path(self.file_name).parent.mkdir(parents=True, exist_ok=True)
        with open(self.file_name, "w", encoding="utf-8") as f:
            json.dump(session_dict, f, allow_nan=False, indent=2)
        logging.info(f"Wrote session {result.name} to {self.file_name}")

    def read(self) -> SessionResult:
        with open(self.file_name, "r", encoding="utf-8") as f:
            session_dict = json.load(f)
        return self.load_session(session_dict)

    def dump_table(self, table: TrialTable) -> dict[str, Any]:
        return {
            "trial_count": table.trial_count,
            "columns": table.to_interop()
        }

    def load_table(self, raw_dict: dict[str, Any]) -> TrialTable:
        return TrialTable.from_interop(raw_dict["trial_count"], raw_dict["columns"])

    def dump_session(self, result: SessionResult) -> dict[str, Any]:
        raw_dict = {
            "name": result.name,
            "status": result.status.value,
            "reason": result.reason,
            "context": result.context,
        }

        if result.trial_info is not None:
            raw_dict["trial_info"] = self.dump_table(result.trial_info)

        if result.event_times is not None:
            raw_dict["event_times"] = self.dump_table(result.event_times)

        if result.match is not None:
            raw_dict["match"] = result.match.to_interop()

        if result.drift is not None:
            raw_dict["drift"] = result.drift.to_interop()

        if result.diagnostic_files:
            raw_dict["diagnostic_files"] = result.diagnostic_files

        return raw_dict

    def load_session(self, raw_dict: dict[str, Any]) -> SessionResult:
        trial_info = raw_dict.get("trial_info", None)
        event_times = raw_dict.get("event_times", None)
        match = raw_dict.get("match", None)
        drift = raw_dict.get("drift", None)
        return SessionResult(
            name=raw_dict["name"],
            status=SessionStatus(raw_dict["status"]),
            reason=raw_dict.get("reason", None),
            context=raw_dict.get("context", {}),
            trial_info=self.load_table(trial_info) if trial_info is not None else None,
            event_times=self.load_table(event_times) if event_times is not None else None,
            match=MatchResult.from_interop(match) if match is not None else None,
            drift=DriftResult.from_interop(drift) if drift is not None else None,
            diagnostic_files=raw_dict.get("diagnostic_files", [])
        )
