from datetime import date

import pytest

from fieldwork.models.enums import JobCategory, JobStatus, ProgressStatus, ReportFrequency, Role, frequency_for
from fieldwork.services.geofence import haversine_distance, is_off_site, valid_point
from fieldwork.services.permissions import CAPABILITIES
from fieldwork.services.state_machine import can_transition
from fieldwork.services.time_rules import cadence_gap, cadence_warning, extended_end_date, extension_days


@pytest.mark.parametrize(
    "minutes,days",
    [(1, 1), (1440, 1), (1441, 2), (4000, 3), (10080, 7)],
)
def test_extension_days_round_up(minutes, days):
    assert extension_days(minutes) == days


def test_extended_end_date():
    assert extended_end_date(date(2024, 1, 10), 4000) == date(2024, 1, 13)
    assert extended_end_date(date(2024, 2, 28), 1440) == date(2024, 2, 29)


def test_cadence():
    assert cadence_gap(date(2024, 1, 1), date(2024, 1, 2), ReportFrequency.daily) == 0
    assert cadence_gap(date(2024, 1, 1), date(2024, 1, 8), ReportFrequency.weekly) == 0
    assert cadence_gap(date(2024, 1, 1), date(2024, 1, 10), ReportFrequency.weekly) == 2
    assert cadence_warning(None, date(2024, 1, 10), ReportFrequency.daily) is None
    assert cadence_warning(date(2024, 1, 1), date(2024, 1, 3), ReportFrequency.daily) == (
        "Previous report was 1 day(s) behind schedule."
    )


def test_category_default_frequency():
    assert frequency_for(JobCategory.reconstruction) == ReportFrequency.weekly
    assert frequency_for(JobCategory.installation) == ReportFrequency.daily
    assert frequency_for(JobCategory.maintenance) == ReportFrequency.daily
    assert frequency_for(JobCategory.maintenance, "Weekly") == ReportFrequency.weekly
    assert frequency_for(JobCategory.reconstruction, "Hourly") == ReportFrequency.weekly


def test_geofence():
    # Jakarta to Bandung is roughly 120 km
    assert 110_000 < haversine_distance(-6.2, 106.8167, -6.9175, 107.6191) < 130_000
    assert not is_off_site(None, None, -6.2, 106.8)
    assert not is_off_site(-6.2001, 106.8001, -6.2, 106.8)
    assert is_off_site(-6.21, 106.8, -6.2, 106.8, radius_m=500)
    assert valid_point(0, 0)
    assert not valid_point(91, 0)
    assert not valid_point(None, 10)


def test_only_done_is_final():
    assert [s for s in ProgressStatus if s.is_final] == [ProgressStatus.done]


def test_state_machine_edges():
    assert can_transition(JobStatus.active, JobStatus.awaiting_manager_validation)
    assert can_transition(JobStatus.active, JobStatus.cancelled)
    assert can_transition(JobStatus.awaiting_manager_validation, JobStatus.rejected)
    assert not can_transition(JobStatus.active, JobStatus.rejected)
    assert not can_transition(JobStatus.awaiting_manager_validation, JobStatus.cancelled)
    for terminal in (JobStatus.completed, JobStatus.rejected, JobStatus.cancelled):
        assert not any(can_transition(terminal, target) for target in JobStatus)


def test_capability_table_roles():
    assert CAPABILITIES["job.final_validate"].roles == frozenset({Role.manager})
    assert CAPABILITIES["report.submit"].roles == frozenset({Role.technician})
    assert CAPABILITIES["extension.resolve"].ownership == "owner"
    assert CAPABILITIES["equipment.return"].ownership == "assigned"
