import enum


class Role(str, enum.Enum):
    supervisor = "Supervisor"
    manager = "Manager"
    technician = "Technician"


class JobCategory(str, enum.Enum):
    reconstruction = "Reconstruction"
    installation = "Installation"
    maintenance = "Maintenance"


class ReportFrequency(str, enum.Enum):
    daily = "Daily"
    weekly = "Weekly"

    @property
    def days(self) -> int:
        return 1 if self is ReportFrequency.daily else 7


# Frequency a job gets when the creator does not pick one explicitly
DEFAULT_FREQUENCY = {
    JobCategory.reconstruction: ReportFrequency.weekly,
    JobCategory.installation: ReportFrequency.daily,
    JobCategory.maintenance: ReportFrequency.daily,
}


def frequency_for(category: "JobCategory", requested=None) -> ReportFrequency:
    if requested:
        try:
            return ReportFrequency(requested)
        except ValueError:
            pass
    return DEFAULT_FREQUENCY.get(category, ReportFrequency.daily)


class JobStatus(str, enum.Enum):
    active = "Active"
    awaiting_manager_validation = "AwaitingManagerValidation"
    completed = "Completed"
    rejected = "Rejected"
    cancelled = "Cancelled"


TERMINAL_JOB_STATUSES = {JobStatus.completed, JobStatus.rejected, JobStatus.cancelled}


class ProgressStatus(str, enum.Enum):
    not_started = "NotStarted"
    in_progress = "InProgress"
    nearly_done = "NearlyDone"
    done = "Done"

    @property
    def is_final(self) -> bool:
        return self is ProgressStatus.done


# Inclusive percentage band each declared status must fall in
PROGRESS_BANDS = {
    ProgressStatus.not_started: (0, 10),
    ProgressStatus.in_progress: (11, 75),
    ProgressStatus.nearly_done: (76, 99),
    ProgressStatus.done: (100, 100),
}


class ValidationStatus(str, enum.Enum):
    pending = "Pending"
    approved = "Approved"
    rejected = "Rejected"


class ObstacleType(str, enum.Enum):
    weather = "Weather"
    access = "Access"
    technical = "Technical"
    other = "Other"

    @classmethod
    def coerce(cls, raw) -> "ObstacleType":
        """Unknown or missing obstacle types fall back to ``Other``."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(raw)
        except ValueError:
            return cls.other


class ExtensionStatus(str, enum.Enum):
    pending = "Pending"
    approved = "Approved"
    rejected = "Rejected"
