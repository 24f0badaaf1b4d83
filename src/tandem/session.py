from typing import Any
from dataclasses import dataclass, field
from enum import Enum
import logging

from tandem.errors import TandemError, IntegrityError, AlignmentFailure
from tandem.model.events import NumericEventList
from tandem.model.control import ControlTrial
from tandem.model.tables import TrialTable
from tandem.trials.trials import EventStreamDecoder, DecodedSession
from tandem.alignment.matcher import TrialMatcher, MatchResult
from tandem.alignment.merge import ControlFieldMerger
from tandem.alignment.drift import DriftCorrector, DriftResult
from tandem.neutral_zone.readers.readers import Reader, read_all
from tandem.neutral_zone.readers.control import merge_control_sources
from tandem.plotters.diagnostics import DiagnosticsWriter


class SessionStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class SessionSpec():
    """Where to find the inputs for one recording session, and where to put its outputs."""

    name: str
    """Unique name for the session, used in logs and output file names."""

    event_log_reader: Reader
    """Reader for the hardware event log."""

    control_files: list[str] = field(default_factory=list)
    """Control software trial files for the session, in any order."""

    events_key: str = "events"
    """Which of the event log reader's results holds the [time, value] events."""

    output_file: str = None
    """Optional JSON file to write the session result to."""

    diagnostics_dir: str = None
    """Optional directory for diagnostic figures."""


@dataclass
class SessionResult():
    """Outcome of processing one session: a status with reason, plus whatever tables could be produced."""

    name: str
    status: SessionStatus = SessionStatus.SUCCESS

    reason: str = None
    """Why the session is partial or failed."""

    context: dict[str, Any] = field(default_factory=dict)
    """Extra details about the session and any problem, like the error type and trial counts."""

    trial_info: TrialTable = None
    event_times: TrialTable = None
    match: MatchResult = None
    drift: DriftResult = None

    decoded: DecodedSession = None
    """Decoded hardware trials, kept in memory only."""

    control_trials: list[ControlTrial] = field(default_factory=list)
    """Control trials for the session, kept in memory only."""

    diagnostic_files: list[str] = field(default_factory=list)

    def is_ok(self) -> bool:
        return self.status is not SessionStatus.FAILED

    def degrade(self, reason: str) -> None:
        """Mark a successful session as partial, keeping the first reason given."""
        if self.status is SessionStatus.SUCCESS:
            self.status = SessionStatus.PARTIAL
            self.reason = reason
        else:
            self.context.setdefault("other_reasons", []).append(reason)

    def fail(self, reason: str, error: Exception = None) -> None:
        self.status = SessionStatus.FAILED
        self.reason = reason
        if error is not None:
            self.context["error_type"] = error.__class__.__name__


class SessionProcessor():
    """Run the whole pipeline for one session at a time: decode, match, merge, correct drift, plot.

    Problems that only affect one session don't raise from here.
    Instead they show up in the status and reason of the returned SessionResult.
    """

    def __init__(
        self,
        decoder: EventStreamDecoder,
        matcher: TrialMatcher,
        merger: ControlFieldMerger,
        corrector: DriftCorrector,
        diagnostics: DiagnosticsWriter = None
    ) -> None:
        self.decoder = decoder
        self.matcher = matcher
        self.merger = merger
        self.corrector = corrector
        self.diagnostics = diagnostics or DiagnosticsWriter()

    def process(self, spec: SessionSpec) -> SessionResult:
        logging.info(f"Processing session {spec.name}")
        result = SessionResult(name=spec.name)
        try:
            self.run_pipeline(spec, result)
        except IntegrityError as error:
            logging.error(f"Session {spec.name} has a malformed event log: {error}")
            result.fail(str(error), error)
        except AlignmentFailure as error:
            logging.error(f"Session {spec.name} could not be aligned: {error}")
            result.fail(str(error), error)
        except TandemError as error:
            logging.error(f"Session {spec.name} failed: {error}")
            result.fail(str(error), error)
        except Exception as error:
            logging.error(f"Unexpected error processing session {spec.name}:", exc_info=True)
            result.fail(f"Unexpected error: {error}", error)

        if spec.diagnostics_dir and result.decoded is not None:
            try:
                result.diagnostic_files = self.diagnostics.write(
                    spec.diagnostics_dir,
                    spec.name,
                    result.decoded,
                    result.control_trials,
                    result.match,
                    result.drift
                )
            except Exception:
                logging.error(f"Error writing diagnostics for session {spec.name}:", exc_info=True)
                result.degrade("Could not write diagnostic figures.")

        logging.info(f"Session {spec.name} status: {result.status.value}" + (f" ({result.reason})" if result.reason else ""))
        return result

    def run_pipeline(self, spec: SessionSpec, result: SessionResult) -> None:
        """Fill in the result stage by stage, so that earlier stages' tables survive a later failure."""
        reader_results = read_all(spec.event_log_reader)
        event_list = reader_results.get(spec.events_key, NumericEventList.empty())

        decoded = self.decoder.decode(event_list)
        result.decoded = decoded
        result.trial_info = decoded.trial_info
        result.event_times = decoded.event_times
        result.context["hardware_trials"] = decoded.trial_count()

        control_trials = merge_control_sources(spec.control_files) if spec.control_files else []
        result.control_trials = control_trials
        result.context["control_trials"] = len(control_trials)
        if not control_trials:
            result.degrade("No control trials to match, event times are uncorrected.")
            return

        match = self.matcher.match_decoded(decoded, control_trials)
        result.match = match
        result.context["matched_trials"] = match.matched_count()

        self.merger.merge(match.correspondence, control_trials, decoded.trial_info, decoded.event_times)

        drift = self.corrector.correct(match.correspondence, control_trials, decoded.trial_info, decoded.event_times)
        result.drift = drift
        if drift.problem is not None:
            result.degrade(str(drift.problem))


def run_batch(processor: SessionProcessor, specs: list[SessionSpec]) -> list[SessionResult]:
    """Process every session in turn, regardless of earlier failures, and return all the results."""
    results = []
    for spec in specs:
        results.append(processor.process(spec))

    counts = {status: 0 for status in SessionStatus}
    for result in results:
        counts[result.status] += 1
    summary = ", ".join(f"{count} {status.value}" for status, count in counts.items())
    logging.info(f"Processed {len(results)} sessions: {summary}.")
    for result in results:
        if result.status is SessionStatus.FAILED:
            logging.warning(f"Session {result.name} failed: {result.reason}")
    return results
