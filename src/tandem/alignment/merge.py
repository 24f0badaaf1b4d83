import logging

from tandem.model.control import ControlTrial
from tandem.model.tables import TrialTable, is_null, is_scalar_number


def prefixed_name(prefix: str, name: str) -> str:
    """Like "pds" + "fixOn" -> "pdsFixOn"."""
    if not name:
        return prefix
    return prefix + name[0].upper() + name[1:]


class ControlFieldMerger():
    """Copy fields from matched control trials into the hardware-indexed trial tables.

    Control variables become trial info columns, unless trial info already has a column of that name.
    Control timing fields become event times columns with a prefix, so they can't be confused with
    hardware times: these are still on the control clock and relative to the control trial start.
    Nested, dict-valued fields are skipped.
    """

    def __init__(self, timing_prefix: str = "pds") -> None:
        self.timing_prefix = timing_prefix

    def merge(
        self,
        correspondence: list[int | None],
        control_trials: list[ControlTrial],
        trial_info: TrialTable,
        event_times: TrialTable
    ) -> tuple[list[str], list[str]]:
        """Fill in trial_info and event_times in place, return the (info, timing) names added."""
        variable_names = {}
        timing_names = {}
        for control_index in correspondence:
            if control_index is None:
                continue
            control_trial = control_trials[control_index]
            for name, value in control_trial.variables.items():
                if not isinstance(value, dict):
                    variable_names[name] = None
            for name, value in control_trial.timing.items():
                if is_null(value) or is_scalar_number(value):
                    timing_names[name] = None

        info_names = [name for name in variable_names.keys() if name not in trial_info]
        for name in info_names:
            numeric = all(
                is_null(control_trials[index].variables.get(name)) or is_scalar_number(control_trials[index].variables.get(name))
                for index in correspondence
                if index is not None
            )
            trial_info.add_column(name, numeric)

        timing_columns = {name: prefixed_name(self.timing_prefix, name) for name in timing_names.keys()}
        for column_name in timing_columns.values():
            event_times.add_column(column_name, numeric=True)

        for hardware_index, control_index in enumerate(correspondence):
            if control_index is None:
                continue
            control_trial = control_trials[control_index]
            for name in info_names:
                trial_info.set_value(name, hardware_index, control_trial.variables.get(name))
            for name, column_name in timing_columns.items():
                value = control_trial.timing.get(name)
                if is_scalar_number(value):
                    event_times.set_value(column_name, hardware_index, float(value))

        logging.info(
            f"Merged {len(info_names)} control variables and {len(timing_columns)} control timing fields into trial tables.")
        return (info_names, list(timing_columns.values()))
