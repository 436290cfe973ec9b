"""Allocation engine behaviour: scenarios, ordering, limits and reporting."""

from __future__ import annotations

import json

import pytest

from roster_core.allocator import (
    explain_assignment,
    generate_schedule,
    plan_from_snapshot,
    workload_overview,
)
from roster_core.conflicts import shifts_overlap
from roster_core.models import AssignedUser, AvailabilityInterval, Employee, ShiftSlot
from roster_core.roles import ANY_ROLE, OWNER_ROLE

SERVER = "Phục vụ"
BARTENDER = "Pha chế"
MON = "2025-01-06"
TUE = "2025-01-07"


def _emp(uid, role=SERVER, *secondary, test=False):
    return Employee(id=uid, display_name=uid.upper(), role=role, secondary_roles=tuple(secondary), is_test_account=test)


def _shift(sid, template="T-AM", date=MON, start="08:00", end="12:00", role=SERVER, min_users=0, assigned=()):
    return ShiftSlot(
        id=sid,
        template_id=template,
        date=date,
        start=start,
        end=end,
        role=role,
        label=sid,
        min_users=min_users,
        assigned=tuple(AssignedUser(uid, uid.upper(), r) for uid, r in assigned),
    )


def _free(uid, date=MON, start="08:00", end="16:00"):
    return AvailabilityInterval(user_id=uid, date=date, start=start, end=end)


def _staffing(template, role, count, mandatory=False, cid=None):
    return {
        "id": cid or f"st-{template}-{role}",
        "type": "ShiftStaffing",
        "templateId": template,
        "role": role,
        "count": count,
        "mandatory": mandatory,
    }


def _link(template, uid, link, cid=None):
    return {"id": cid or f"ln-{uid}-{link}", "type": "StaffShiftLink", "templateId": template, "userId": uid, "link": link}


def _pairs(result):
    return [(a.shift_id, a.user_id) for a in result.assignments]


@pytest.fixture
def scenario_shift():
    return _shift("s1", min_users=0)


@pytest.fixture
def scenario_employees():
    return [_emp("a"), _emp("b"), _emp("c")]


@pytest.fixture
def scenario_availability():
    # Weekly free time: a 16h, b 8h, c 4h; everyone free for the Monday shift.
    return [
        _free("a"),
        _free("a", date=TUE),
        _free("b"),
        _free("c", end="12:00"),
    ]


class TestScenarios:
    def test_most_relative_free_time_wins(self, scenario_shift, scenario_employees, scenario_availability):
        result = generate_schedule(
            [scenario_shift],
            scenario_employees,
            scenario_availability,
            [_staffing("T-AM", SERVER, 2)],
        )
        assert result.ok
        assert _pairs(result) == [("s1", "a"), ("s1", "b")]
        assert result.unfilled == []
        assert result.warnings == []

    def test_unit_ids_count_from_zero(self, scenario_shift, scenario_employees, scenario_availability):
        result = generate_schedule(
            [scenario_shift], scenario_employees, scenario_availability, [_staffing("T-AM", SERVER, 2)]
        )
        assert list(result.evaluation_matrix) == [f"s1#{SERVER}#0", f"s1#{SERVER}#1"]

    def test_force_link_beats_unavailability(self, scenario_shift, scenario_employees):
        availability = [_free("a"), _free("a", date=TUE), _free("b"), _free("c", date=TUE, end="12:00")]
        result = generate_schedule(
            [scenario_shift],
            scenario_employees,
            availability,
            [_staffing("T-AM", SERVER, 2), _link("T-AM", "c", "force")],
        )
        assert _pairs(result) == [("s1", "c"), ("s1", "a")]
        forced = [a for a in result.assignments if a.forced]
        assert [a.user_id for a in forced] == ["c"]
        assert len(result.warnings) == 1
        assert "C assigned despite unavailability" in result.warnings[0]

    def test_user_weekly_shift_cap_excludes_second_unit(self):
        shifts = [_shift("mon", min_users=1), _shift("tue", date=TUE, min_users=1)]
        conditions = [{"id": "wl-d", "type": "WorkloadLimit", "scope": "user", "userId": "d", "maxShiftsPerWeek": 1}]
        result = generate_schedule(shifts, [_emp("d")], [_free("d"), _free("d", date=TUE)], conditions)

        assert _pairs(result) == [("mon", "d")]
        assert [u.shift_id for u in result.unfilled] == ["tue"]
        rows = result.evaluation_matrix[f"tue#{SERVER}#0"]
        assert rows[0]["blocked_reasons"] == ["weekly_shift_limit"]
        assert any(w.startswith("Unfilled:") for w in result.warnings)

    def test_force_and_ban_on_same_pair_aborts(self, scenario_shift, scenario_employees, scenario_availability):
        result = generate_schedule(
            [scenario_shift],
            scenario_employees,
            scenario_availability,
            [_staffing("T-AM", SERVER, 2), _link("T-AM", "a", "force", "l1"), _link("T-AM", "a", "ban", "l2")],
        )
        assert not result.ok
        assert result.assignments == []
        assert any("both force and ban" in e for e in result.errors)


class TestValidationGate:
    def test_min_above_max_blocks_the_run(self, scenario_shift, scenario_employees, scenario_availability):
        conditions = [
            _staffing("T-AM", SERVER, 2),
            {"id": "wl", "type": "WorkloadLimit", "scope": "global", "minShiftsPerWeek": 5, "maxShiftsPerWeek": 2},
        ]
        result = generate_schedule([scenario_shift], scenario_employees, scenario_availability, conditions)
        assert result.assignments == []
        assert result.unfilled == []
        assert result.errors
        assert result.evaluation_matrix == {}

    def test_disabled_conditions_do_not_block(self, scenario_shift, scenario_employees, scenario_availability):
        conditions = [
            _staffing("T-AM", SERVER, 1),
            {
                "id": "wl",
                "type": "WorkloadLimit",
                "scope": "global",
                "minShiftsPerWeek": 5,
                "maxShiftsPerWeek": 2,
                "enabled": False,
            },
        ]
        result = generate_schedule([scenario_shift], scenario_employees, scenario_availability, conditions)
        assert result.ok
        assert len(result.assignments) == 1


class TestDeterminism:
    def test_identical_inputs_identical_output(self, scenario_shift, scenario_employees, scenario_availability):
        conditions = [_staffing("T-AM", SERVER, 2)]
        first = generate_schedule([scenario_shift], scenario_employees, scenario_availability, conditions)
        second = generate_schedule(
            [scenario_shift], list(reversed(scenario_employees)), list(reversed(scenario_availability)), conditions
        )
        assert json.dumps(first.to_dict(), sort_keys=True) == json.dumps(second.to_dict(), sort_keys=True)

    def test_ties_break_on_user_id(self):
        result = generate_schedule(
            [_shift("s1", min_users=1)],
            [_emp("zed"), _emp("amy")],
            [_free("zed"), _free("amy")],
            [],
        )
        assert _pairs(result) == [("s1", "amy")]

    def test_primary_role_preferred_on_equal_score(self):
        result = generate_schedule(
            [_shift("s1", role=BARTENDER, min_users=1)],
            [_emp("a-sec", SERVER, BARTENDER), _emp("b-prim", BARTENDER)],
            [_free("a-sec"), _free("b-prim")],
            [],
        )
        assert _pairs(result) == [("s1", "b-prim")]

    def test_duplicate_shift_ids_rejected(self):
        with pytest.raises(ValueError, match="duplicate shift id"):
            generate_schedule([_shift("s1"), _shift("s1", date=TUE)], [], [], [])


class TestBlockers:
    def test_ban_holds_against_mandatory_priority(self):
        conditions = [
            _link("T-AM", "a", "ban"),
            {"id": "p", "type": "StaffPriority", "templateId": "T-AM", "userId": "a", "weight": 5, "mandatory": True},
        ]
        result = generate_schedule([_shift("s1", min_users=1)], [_emp("a")], [_free("a")], conditions)
        assert result.ok
        assert result.assignments == []
        assert result.evaluation_matrix[f"s1#{SERVER}#0"][0]["blocked_reasons"] == ["banned"]
        assert not any("Could not honor" in w for w in result.warnings)

    def test_role_mismatch_never_assigned(self):
        result = generate_schedule(
            [_shift("s1", role=BARTENDER, min_users=2)],
            [_emp("server"), _emp("flex", SERVER, BARTENDER)],
            [_free("server"), _free("flex")],
            [],
        )
        assert _pairs(result) == [("s1", "flex")]
        assert result.unfilled[0].by_role == {BARTENDER: 1}

    def test_any_role_excludes_owner(self):
        result = generate_schedule(
            [_shift("s1", role=ANY_ROLE, min_users=1)],
            [_emp("boss", OWNER_ROLE)],
            [_free("boss")],
            [],
        )
        assert result.assignments == []
        assert result.evaluation_matrix[f"s1#{ANY_ROLE}#0"] == []

    def test_test_accounts_are_skipped(self):
        result = generate_schedule(
            [_shift("s1", min_users=1)],
            [_emp("qa", test=True)],
            [_free("qa")],
            [],
        )
        assert result.assignments == []

    def test_no_double_booking_on_overlap(self):
        shifts = [_shift("early", min_users=1), _shift("late", template="T-MID", start="10:00", end="14:00", min_users=1)]
        result = generate_schedule(shifts, [_emp("a")], [_free("a")], [])

        assert _pairs(result) == [("early", "a")]
        assert "time_conflict" in result.evaluation_matrix[f"late#{SERVER}#0"][0]["blocked_reasons"]
        by_id = {s.id: s for s in shifts}
        worked = [by_id[a.shift_id] for a in result.assignments if a.user_id == "a"]
        assert not any(shifts_overlap(x, y) for i, x in enumerate(worked) for y in worked[i + 1:])

    def test_retained_assignee_blocks_overlap(self):
        shifts = [
            _shift("early", assigned=[("a", SERVER)]),
            _shift("late", template="T-MID", start="10:00", end="14:00", min_users=1),
        ]
        result = generate_schedule(shifts, [_emp("a")], [_free("a")], [])
        assert result.assignments == []
        assert result.evaluation_matrix[f"late#{SERVER}#0"][0]["blocked_reasons"] == ["time_conflict"]

    def test_weekly_hours_ceiling(self):
        shifts = [_shift("mon", min_users=1), _shift("tue", date=TUE, min_users=1)]
        conditions = [{"id": "wl", "type": "WorkloadLimit", "scope": "global", "maxHoursPerWeek": 6}]
        result = generate_schedule(shifts, [_emp("a")], [_free("a"), _free("a", date=TUE)], conditions)
        assert _pairs(result) == [("mon", "a")]
        assert result.evaluation_matrix[f"tue#{SERVER}#0"][0]["blocked_reasons"] == ["weekly_hours_limit"]

    def test_user_limit_replaces_global(self):
        shifts = [_shift("mon", min_users=1), _shift("tue", date=TUE, min_users=1)]
        conditions = [
            {"id": "g", "type": "WorkloadLimit", "scope": "global", "maxShiftsPerWeek": 1},
            {"id": "u", "type": "WorkloadLimit", "scope": "user", "userId": "a", "minShiftsPerWeek": 1},
        ]
        result = generate_schedule(shifts, [_emp("a")], [_free("a"), _free("a", date=TUE)], conditions)
        assert _pairs(result) == [("mon", "a"), ("tue", "a")]

    def test_daily_shift_limit(self):
        shifts = [_shift("am", min_users=1), _shift("pm", template="T-PM", start="13:00", end="16:00", min_users=1)]
        conditions = [{"id": "d", "type": "DailyShiftLimit", "maxPerDay": 1}]
        result = generate_schedule(shifts, [_emp("a")], [_free("a")], conditions)
        assert _pairs(result) == [("am", "a")]
        assert result.evaluation_matrix[f"pm#{SERVER}#0"][0]["blocked_reasons"] == ["daily_shift_limit"]

    def test_exclusion_with_earlier_assignee(self):
        conditions = [{"id": "x", "type": "StaffExclusion", "userId": "a", "blockedUserIds": ["b"]}]
        result = generate_schedule(
            [_shift("s1", min_users=2)],
            [_emp("a"), _emp("b")],
            [_free("a"), _free("a", date=TUE), _free("b")],
            conditions,
        )
        assert _pairs(result) == [("s1", "a")]
        rows = {r["user_id"]: r for r in result.evaluation_matrix[f"s1#{SERVER}#1"]}
        assert "excluded_pair" in rows["b"]["blocked_reasons"]

    def test_exclusion_scoped_to_other_template_does_not_apply(self):
        conditions = [{"id": "x", "type": "StaffExclusion", "userId": "a", "blockedUserIds": ["b"], "templateId": "T-PM"}]
        result = generate_schedule(
            [_shift("s1", min_users=2)],
            [_emp("a"), _emp("b")],
            [_free("a"), _free("b")],
            conditions,
        )
        assert sorted(a.user_id for a in result.assignments) == ["a", "b"]


class TestForcedOverrides:
    def test_force_exceeds_workload_with_warning(self):
        shifts = [
            _shift("mon", template="T-MON", min_users=1, assigned=[("a", SERVER)]),
            _shift("tue", template="T-TUE", date=TUE, min_users=1),
        ]
        conditions = [
            {"id": "wl", "type": "WorkloadLimit", "scope": "user", "userId": "a", "maxShiftsPerWeek": 1},
            _link("T-TUE", "a", "force"),
        ]
        result = generate_schedule(shifts, [_emp("a")], [_free("a"), _free("a", date=TUE)], conditions)
        assert _pairs(result) == [("tue", "a")]
        assert any("exceeded workload limit due to mandatory assignment" in w for w in result.warnings)

    def test_forced_shift_claimed_before_earlier_workload(self):
        shifts = [_shift("mon", template="T-MON", min_users=1), _shift("tue", template="T-TUE", date=TUE, min_users=1)]
        conditions = [
            {"id": "wl", "type": "WorkloadLimit", "scope": "user", "userId": "a", "maxShiftsPerWeek": 1},
            _link("T-TUE", "a", "force"),
        ]
        result = generate_schedule(shifts, [_emp("a")], [_free("a"), _free("a", date=TUE)], conditions)
        assert _pairs(result) == [("tue", "a")]
        assert result.evaluation_matrix[f"mon#{SERVER}#0"][0]["blocked_reasons"] == ["weekly_shift_limit"]
        assert not any(w.startswith("Could not honor") for w in result.warnings)

    def test_forced_pair_wins_over_earlier_overlapping_shift(self):
        shifts = [
            _shift("early", template="T-A", start="08:00", end="12:00", min_users=1),
            _shift("late", template="T-B", start="10:00", end="14:00", min_users=1),
        ]
        employees = [_emp("f"), _emp("g")]
        availability = [_free("f"), _free("f", date=TUE), _free("g", end="12:00")]
        result = generate_schedule(shifts, employees, availability, [_link("T-B", "f", "force")])

        assert sorted(_pairs(result)) == [("early", "g"), ("late", "f")]
        assert result.unfilled == []
        assert not any(w.startswith("Could not honor") for w in result.warnings)
        early_rows = {r["user_id"]: r for r in result.evaluation_matrix[f"early#{SERVER}#0"]}
        assert early_rows["f"]["blocked_reasons"] == ["time_conflict"]

    def test_overlapping_forced_pairs_first_in_time_wins(self):
        shifts = [
            _shift("early", template="T-A", start="08:00", end="12:00", min_users=1),
            _shift("late", template="T-B", start="10:00", end="14:00", min_users=1),
        ]
        conditions = [_link("T-A", "f", "force", "l1"), _link("T-B", "f", "force", "l2")]
        result = generate_schedule(shifts, [_emp("f")], [_free("f")], conditions)

        assert _pairs(result) == [("early", "f")]
        assert any("Could not honor forced assignment of F to" in w and "time_conflict" in w for w in result.warnings)

    def test_strict_availability_disables_force_bypass(self):
        conditions = [_link("T-AM", "a", "force"), {"id": "s", "type": "AvailabilityStrictness", "strict": True}]
        result = generate_schedule([_shift("s1", min_users=1)], [_emp("a")], [], conditions)
        assert result.assignments == []
        assert any("Could not honor forced assignment of A" in w and "unavailable" in w for w in result.warnings)

    def test_forced_role_mismatch_reported(self):
        result = generate_schedule(
            [_shift("s1", role=BARTENDER, min_users=1)],
            [_emp("a")],
            [_free("a")],
            [_link("T-AM", "a", "force")],
        )
        assert result.assignments == []
        assert any("role Phục vụ does not match the shift" in w for w in result.warnings)

    def test_priority_weight_outranks_free_time(self, scenario_shift, scenario_employees, scenario_availability):
        conditions = [
            _staffing("T-AM", SERVER, 1),
            {"id": "p", "type": "StaffPriority", "templateId": "T-AM", "userId": "c", "weight": 1},
        ]
        result = generate_schedule([scenario_shift], scenario_employees, scenario_availability, conditions)
        assert _pairs(result) == [("s1", "c")]
        assert result.assignments[0].score == pytest.approx(149.5)
        assert not result.assignments[0].forced


class TestBusyPass:
    @pytest.fixture
    def busy_inputs(self):
        return [_shift("s1", min_users=1)], [_emp("a")], []

    def test_off_by_default(self, busy_inputs):
        shifts, employees, availability = busy_inputs
        result = generate_schedule(shifts, employees, availability, [])
        assert result.assignments == []
        assert result.unfilled[0].remaining == 1

    def test_lifts_availability(self, busy_inputs):
        shifts, employees, availability = busy_inputs
        result = generate_schedule(shifts, employees, availability, [], include_busy_users=True)
        assert _pairs(result) == [("s1", "a")]
        assert result.unfilled == []
        assert any("assigned despite unavailability" in w for w in result.warnings)

    def test_exclusion_list_respected(self, busy_inputs):
        shifts, employees, availability = busy_inputs
        result = generate_schedule(
            shifts, employees, availability, [], include_busy_users=True, busy_exclusion_ids=["a"]
        )
        assert result.assignments == []


class TestStrategies:
    def test_merge_keeps_and_reports_retained_first(self):
        shift = _shift("s1", min_users=2, assigned=[("r", SERVER)])
        result = generate_schedule([shift], [_emp("r"), _emp("n")], [_free("r"), _free("n")], [])
        assert [(a.user_id, a.retained) for a in result.assignments] == [("r", True), ("n", False)]

    def test_merge_leaves_filled_shifts_out(self):
        shift = _shift("s1", min_users=1, assigned=[("r", SERVER)])
        result = generate_schedule([shift], [_emp("r"), _emp("n")], [_free("r"), _free("n")], [])
        assert result.assignments == []
        assert result.evaluation_matrix == {}

    def test_replace_starts_from_empty(self):
        shift = _shift("s1", min_users=2, assigned=[("r", SERVER)])
        result = generate_schedule(
            [shift], [_emp("r"), _emp("n")], [_free("r"), _free("n")], [], strategy="replace"
        )
        assert sorted(a.user_id for a in result.assignments) == ["n", "r"]
        assert not any(a.retained for a in result.assignments)

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown strategy"):
            generate_schedule([], [], [], [], strategy="overwrite")

    def test_retained_role_counts_toward_staffing(self):
        shift = _shift("s1", assigned=[("r", SERVER)])
        conditions = [_staffing("T-AM", SERVER, 1), _staffing("T-AM", BARTENDER, 1, mandatory=True)]
        result = generate_schedule([shift], [_emp("r")], [_free("r")], conditions)
        assert list(result.evaluation_matrix) == [f"s1#{BARTENDER}#0"]
        assert result.unfilled[0].by_role == {BARTENDER: 1}
        assert any(w.startswith("Mandatory staffing shortfall") for w in result.warnings)


class TestScoring:
    def test_custom_weights(self, scenario_shift, scenario_employees, scenario_availability):
        result = generate_schedule(
            [scenario_shift],
            scenario_employees,
            scenario_availability,
            [_staffing("T-AM", SERVER, 1)],
            scoring={"proportional_max": 10},
        )
        assert result.assignments[0].score == pytest.approx(8.0)

    def test_unknown_weight_rejected(self, scenario_shift):
        with pytest.raises(ValueError, match="Unknown scoring keys"):
            generate_schedule([scenario_shift], [], [], [], scoring={"seniority": 3})

    def test_no_free_time_scores_zero(self):
        result = generate_schedule(
            [_shift("s1", min_users=1)], [_emp("a")], [], [_link("T-AM", "a", "force")]
        )
        detail = result.evaluation_matrix[f"s1#{SERVER}#0"][0]["score_detail"]
        assert detail == {"forced": 1000.0, "priority": 500.0, "proportional": 0.0}


class TestReportingWarnings:
    def test_below_minimum(self):
        conditions = [{"id": "wl", "type": "WorkloadLimit", "scope": "global", "minShiftsPerWeek": 2, "minHoursPerWeek": 10}]
        result = generate_schedule([_shift("s1", min_users=1)], [_emp("a")], [_free("a")], conditions)
        assert "A is below the minimum of 2 shift(s) per week (1 assigned)" in result.warnings
        assert "A is below the minimum of 10h per week (4.0h assigned)" in result.warnings


class TestExplainAndWorkload:
    @pytest.fixture
    def scenario_result(self, scenario_shift, scenario_employees, scenario_availability):
        return generate_schedule(
            [scenario_shift], scenario_employees, scenario_availability, [_staffing("T-AM", SERVER, 2)]
        )

    def test_explain_breakdown(self, scenario_result):
        info = explain_assignment(scenario_result, "s1", "b")
        assert info["score"] == pytest.approx(66.0)
        assert info["score_detail"]["proportional"] == pytest.approx(66.0)
        assert info["unit_id"] == f"s1#{SERVER}#1"
        assert [alt["user_id"] for alt in info["alternatives"]] == ["c", "a"]

    def test_explain_unknown_raises(self, scenario_result):
        with pytest.raises(KeyError):
            explain_assignment(scenario_result, "s1", "c")

    def test_explain_retained(self):
        shift = _shift("s1", min_users=2, assigned=[("r", SERVER)])
        result = generate_schedule([shift], [_emp("r"), _emp("n")], [_free("n")], [])
        assert explain_assignment(result, "s1", "r")["retained"] is True

    def test_workload_overview(self, scenario_result, scenario_shift, scenario_employees):
        conditions = [{"id": "wl", "type": "WorkloadLimit", "scope": "global", "maxHoursPerWeek": 8}]
        rows = workload_overview(scenario_result, [scenario_shift], scenario_employees, conditions)
        assert [r["user_id"] for r in rows] == ["a", "b", "c"]
        assert rows[0]["assigned_hours"] == 4.0
        assert rows[2]["assigned_shifts"] == 0
        assert all(r["within_limits"] for r in rows)
        assert rows[0]["max_hours"] == 8


class TestPlanFromSnapshot:
    @pytest.fixture
    def snapshot(self):
        return {
            "snapshot_id": "snap-1",
            "week_id": "2025-W2",
            "range": {"from": "2025-01-06", "to": "2025-01-12"},
            "employees": [{"id": "a", "display_name": "An", "role": SERVER}],
            "shifts": [
                {"id": "s1", "template_id": "T-AM", "date": MON, "start": "08:00", "end": "12:00", "role": SERVER, "min_users": 2},
            ],
            "availability": [{"user_id": "a", "date": MON, "start": "08:00", "end": "16:00"}],
            "conditions": [],
        }

    def test_plan_shape(self, snapshot):
        plan = plan_from_snapshot(snapshot)
        assert plan["plan_id"].startswith("plan-")
        assert plan["week_id"] == "2025-W2"
        assert plan["strategy"] == "merge"
        assert plan["metrics"]["assigned_units"] == 1
        assert plan["metrics"]["unfilled_units"] == 1
        assert plan["metrics"]["fill_rate"] == 50.0
        assert plan["employees"] == {"a": "An"}
        assert plan["shifts"]["s1"]["template_id"] == "T-AM"
        assert plan["workload"][0]["assigned_shifts"] == 1

    def test_nothing_to_fill(self, snapshot):
        snapshot["shifts"][0]["min_users"] = 0
        plan = plan_from_snapshot(snapshot)
        assert plan["metrics"]["fill_rate"] == 100.0

    def test_failed_validation_has_no_workload(self, snapshot):
        snapshot["conditions"] = [
            {"id": "wl", "type": "WorkloadLimit", "scope": "global", "minHoursPerWeek": 9, "maxHoursPerWeek": 1}
        ]
        plan = plan_from_snapshot(snapshot)
        assert plan["metrics"]["ok"] is False
        assert plan["workload"] == []
