import pytest
from datetime import timedelta

from core.goals import (GoalProgress, GoalType, Timeframe, MemberProgress, ActivityLevel,
                        record_progress, summarize, squad_activity, activity_level)
from conftest import NOW


def make_goal(target=100, individual_target=None, goal_type=GoalType.APPLICATIONS_STARTED, days_left=10):
    return GoalProgress(
        type=goal_type,
        target=target,
        timeframe=Timeframe.MONTHLY,
        start_date=NOW - timedelta(days=5),
        end_date=NOW + timedelta(days=days_left),
        individual_target=individual_target,
    )


class TestGoalProgressModel:
    def test_end_date_must_follow_start_date(self):
        with pytest.raises(ValueError):
            GoalProgress(
                type=GoalType.DAYS_ACTIVE,
                target=5,
                timeframe=Timeframe.WEEKLY,
                start_date=NOW,
                end_date=NOW,
            )

    def test_target_must_be_positive(self):
        with pytest.raises(ValueError):
            make_goal(target=0)

    def test_new_goal_has_no_progress(self):
        goal = make_goal()
        assert goal.current_progress == 0
        assert goal.progress_percentage == 0
        assert goal.is_on_track is False

    def test_days_remaining_rounds_up(self):
        goal = make_goal(days_left=10)
        assert goal.days_remaining(NOW) == 10
        assert goal.days_remaining(NOW + timedelta(hours=1)) == 10
        assert goal.days_remaining(NOW + timedelta(days=9, hours=23)) == 1

    def test_days_remaining_negative_when_overdue(self):
        goal = make_goal(days_left=2)
        assert goal.days_remaining(NOW + timedelta(days=5)) == -3

    def test_member_target_falls_back_to_group_target(self):
        assert make_goal(target=50).member_target == 50
        assert make_goal(target=50, individual_target=10).member_target == 10


class TestMemberProgress:
    def test_low_progress_needs_help(self):
        member = MemberProgress(member_id="m1", target=10, progress=2)
        assert member.percentage == 20
        assert member.needs_help is True
        assert member.is_on_track is False

    def test_on_track_threshold_is_inclusive(self):
        member = MemberProgress(member_id="m1", target=4, progress=3)
        assert member.percentage == 75
        assert member.is_on_track is True
        assert member.needs_help is False

    def test_needs_help_threshold_is_exclusive(self):
        member = MemberProgress(member_id="m1", target=4, progress=1)
        assert member.percentage == 25
        assert member.needs_help is False

    def test_percentage_rounds_half_up(self):
        member = MemberProgress(member_id="m1", target=8, progress=1)
        # 12.5 rounds to 13
        assert member.percentage == 13

    def test_never_both_needing_help_and_on_track(self):
        for progress in range(0, 25):
            member = MemberProgress(member_id="m1", target=20, progress=progress)
            assert not (member.needs_help and member.is_on_track)


class TestRecordProgress:
    def test_two_members_reach_on_track(self):
        goal = make_goal(target=100)
        record_progress(goal, "alice", 30, NOW)
        record_progress(goal, "bob", 45, NOW)

        assert goal.current_progress == 75
        assert goal.progress_percentage == 75
        assert goal.is_on_track is True

    def test_new_member_uses_individual_target(self):
        goal = make_goal(target=100, individual_target=10)
        member = record_progress(goal, "alice", 2, NOW)

        assert member.target == 10
        assert member.percentage == 20
        assert member.needs_help is True
        assert member.last_activity == NOW

    def test_existing_member_is_overwritten_not_duplicated(self):
        goal = make_goal(target=10)
        record_progress(goal, "alice", 3, NOW)
        record_progress(goal, "alice", 7, NOW + timedelta(hours=2))

        assert len(goal.member_progress) == 1
        assert goal.member_progress["alice"].progress == 7
        assert goal.member_progress["alice"].last_activity == NOW + timedelta(hours=2)
        assert goal.current_progress == 7
        assert goal.progress_percentage == 70

    def test_same_value_twice_gives_same_state(self):
        goal = make_goal(target=40)
        record_progress(goal, "alice", 12, NOW)
        first = (goal.member_progress["alice"].progress, goal.member_progress["alice"].percentage, goal.progress_percentage)
        record_progress(goal, "alice", 12, NOW + timedelta(minutes=5))
        second = (goal.member_progress["alice"].progress, goal.member_progress["alice"].percentage, goal.progress_percentage)

        assert first == second

    def test_current_progress_is_sum_of_members(self):
        goal = make_goal(target=20)
        for member_id, value in [("a", 3), ("b", 4), ("a", 6), ("c", 0), ("b", 1)]:
            record_progress(goal, member_id, value, NOW)
            assert goal.current_progress == sum(mp.progress for mp in goal.member_progress.values())
        assert goal.current_progress == 7

    def test_progress_can_exceed_target(self):
        goal = make_goal(target=4)
        record_progress(goal, "alice", 6, NOW)
        assert goal.progress_percentage == 150
        assert goal.is_completed is True

    def test_negative_progress_is_rejected(self):
        goal = make_goal()
        with pytest.raises(ValueError):
            record_progress(goal, "alice", -1, NOW)
        assert goal.member_progress == {}


class TestSummarize:
    def test_empty_squad_summary_is_all_zero(self):
        summary = summarize([])
        assert summary.total_goals == 0
        assert summary.completed_goals == 0
        assert summary.on_track_goals == 0
        assert summary.members_needing_help == 0
        assert summary.average_progress == 0

    def test_summary_counts(self):
        done = make_goal(target=10)
        record_progress(done, "alice", 10, NOW)

        behind = make_goal(target=10, individual_target=5)
        record_progress(behind, "alice", 1, NOW)
        record_progress(behind, "bob", 1, NOW)

        summary = summarize([done, behind])
        assert summary.total_goals == 2
        assert summary.completed_goals == 1
        assert summary.on_track_goals == 1
        assert summary.members_needing_help == 2
        assert summary.average_progress == 60

    def test_members_needing_help_counted_once_across_goals(self):
        first = make_goal(target=100)
        second = make_goal(target=100, goal_type=GoalType.DOCUMENTS_CREATED)
        record_progress(first, "alice", 1, NOW)
        record_progress(second, "alice", 2, NOW)

        assert summarize([first, second]).members_needing_help == 1

    def test_former_members_do_not_need_help(self):
        goal = make_goal(target=100)
        record_progress(goal, "alice", 1, NOW)
        record_progress(goal, "bob", 2, NOW)

        assert summarize([goal], member_ids=["alice"]).members_needing_help == 1


class TestSquadActivity:
    def test_totals_by_goal_type(self):
        started = make_goal(target=10, goal_type=GoalType.APPLICATIONS_STARTED)
        completed = make_goal(target=10, goal_type=GoalType.APPLICATIONS_COMPLETED)
        documents = make_goal(target=10, goal_type=GoalType.DOCUMENTS_CREATED)
        reviews = make_goal(target=10, goal_type=GoalType.PEER_REVIEWS_PROVIDED)
        record_progress(started, "alice", 4, NOW)
        record_progress(completed, "alice", 2, NOW)
        record_progress(documents, "bob", 3, NOW)
        record_progress(reviews, "bob", 5, NOW)

        activity = squad_activity([started, completed, documents, reviews], member_ids=["alice", "bob", "carol", "dave"], now=NOW)
        assert activity.total_applications == 6
        assert activity.total_documents == 3
        assert activity.total_reviews == 5
        assert activity.average_activity_score == 50
        assert activity.activity_level == ActivityLevel.MEDIUM
        assert activity.completion_percentage == 35

    def test_stale_members_are_not_active(self):
        goal = make_goal(target=10)
        record_progress(goal, "alice", 4, NOW - timedelta(days=8))
        record_progress(goal, "bob", 4, NOW - timedelta(days=1))

        activity = squad_activity([goal], member_ids=["alice", "bob"], now=NOW)
        assert activity.average_activity_score == 50

    def test_former_members_are_not_counted_as_active(self):
        goal = make_goal(target=10)
        record_progress(goal, "alice", 4, NOW)
        record_progress(goal, "bob", 4, NOW)

        activity = squad_activity([goal], member_ids=["alice"], now=NOW)
        assert activity.average_activity_score == 100
        assert activity.activity_level == ActivityLevel.HIGH
        assert activity.total_applications == 8

    def test_no_members_no_score(self):
        activity = squad_activity([], member_ids=[], now=NOW)
        assert activity.average_activity_score == 0
        assert activity.activity_level == ActivityLevel.LOW
        assert activity.completion_percentage == 0

    def test_activity_level_thresholds(self):
        assert activity_level(80) == ActivityLevel.HIGH
        assert activity_level(79) == ActivityLevel.MEDIUM
        assert activity_level(50) == ActivityLevel.MEDIUM
        assert activity_level(49) == ActivityLevel.LOW
