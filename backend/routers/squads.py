from typing import List, Optional
from fastapi import APIRouter, HTTPException, Body, Path, Query, Depends
from sqlmodel import Session, select, desc

from models import (User, Squad, SquadMember, SquadGoal, SquadType, Visibility, SquadCreate, SquadRead,
                    GoalCreate, GoalRead, MemberProgressRead, ProgressUpdate, ProgressSummaryRead,
                    SquadActivityRead, SquadProgressResponse)
from core.goals import GoalProgress, record_progress, summarize, squad_activity
from config import get_current_user_dep, logger
from time_utils import utc_now, to_naive_utc

router = APIRouter(prefix="/squads", tags=["Squads"])

def get_database_engine():
    """Get the database engine from the main app context"""
    from fastapi_app import database_engine
    return database_engine


####################
#     Helpers      #
####################

def get_member_ids(session: Session, squad_id: str) -> List[str]:
    members = session.exec(
        select(SquadMember).where(SquadMember.squad_id == squad_id).order_by(SquadMember.joined_at)
    ).all()
    return [m.user_id for m in members]


def get_squad_or_404(session: Session, squad_id: str) -> Squad:
    squad = session.get(Squad, squad_id)
    if not squad:
        raise HTTPException(status_code=404, detail="Squad not found")
    return squad


def require_member(session: Session, squad: Squad, user: User) -> List[str]:
    member_ids = get_member_ids(session, squad.id)
    if user.id not in member_ids:
        raise HTTPException(status_code=403, detail="User is not a member of this squad")
    return member_ids


def require_creator(squad: Squad, user: User, action: str):
    if squad.creator_id != user.id:
        raise HTTPException(status_code=403, detail=f"Only squad creators can {action}")


def get_goal_or_404(session: Session, squad_id: str, goal_id: str) -> SquadGoal:
    goal = session.get(SquadGoal, goal_id)
    if not goal or goal.squad_id != squad_id:
        raise HTTPException(status_code=404, detail="Goal not found")
    return goal


def to_squad_read(squad: Squad, member_ids: List[str]) -> SquadRead:
    return SquadRead(
        id=squad.id,
        name=squad.name,
        description=squad.description,
        max_members=squad.max_members,
        visibility=squad.visibility,
        formation_type=squad.formation_type,
        squad_type=squad.squad_type,
        creator_id=squad.creator_id,
        member_ids=member_ids,
        created_at=squad.created_at
    )


def to_goal_read(row: SquadGoal, goal: GoalProgress, now) -> GoalRead:
    return GoalRead(
        id=row.id,
        squad_id=row.squad_id,
        type=goal.type,
        target=goal.target,
        individual_target=goal.individual_target,
        timeframe=goal.timeframe,
        start_date=goal.start_date,
        end_date=goal.end_date,
        description=goal.description,
        current_progress=goal.current_progress,
        progress_percentage=goal.progress_percentage,
        days_remaining=goal.days_remaining(now),
        is_on_track=goal.is_on_track,
        member_progress=[
            MemberProgressRead(
                member_id=mp.member_id,
                progress=mp.progress,
                target=mp.target,
                percentage=mp.percentage,
                last_activity=mp.last_activity,
                needs_help=mp.needs_help,
                is_on_track=mp.is_on_track
            )
            for mp in goal.member_progress.values()
        ]
    )


####################
#      Squads      #
####################

@router.get("/",
         summary="List my squads",
         description="Retrieves the squads the authenticated user belongs to, newest first.",
         response_model=List[SquadRead])
def list_squads(squad_type: Optional[SquadType] = Query(None, description="Only return squads of this type."),
                current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        query = (
            select(Squad)
            .join(SquadMember, SquadMember.squad_id == Squad.id)
            .where(SquadMember.user_id == current_user.id)
        )
        if squad_type:
            query = query.where(Squad.squad_type == squad_type)

        squads = session.exec(query.order_by(desc(Squad.created_at))).all()
        return [to_squad_read(s, get_member_ids(session, s.id)) for s in squads]


@router.post("/",
          status_code=201,
          summary="Create a squad",
          description="Creates a squad with the authenticated user as creator and first member. A user can belong to only one primary squad.",
          response_model=SquadRead)
def create_squad(squad_data: SquadCreate = Body(..., description="Squad to create"),
                 current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        if squad_data.squad_type == SquadType.PRIMARY:
            existing_primary = session.exec(
                select(Squad)
                .join(SquadMember, SquadMember.squad_id == Squad.id)
                .where(SquadMember.user_id == current_user.id)
                .where(Squad.squad_type == SquadType.PRIMARY)
            ).first()
            if existing_primary:
                raise HTTPException(status_code=400, detail="User already has a primary squad")

        squad = Squad(**squad_data.model_dump(), creator_id=current_user.id)
        session.add(squad)
        session.add(SquadMember(squad_id=squad.id, user_id=current_user.id))
        session.commit()
        session.refresh(squad)

        logger.info(f"Squad {squad.id} created by {current_user.id}")
        return to_squad_read(squad, [current_user.id])


@router.get("/{squad_id}",
         summary="Get a squad",
         description="Retrieves a squad. Only members can see it.",
         response_model=SquadRead)
def get_squad(squad_id: str = Path(..., description="Unique identifier of the squad"),
              current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        member_ids = require_member(session, squad, current_user)
        return to_squad_read(squad, member_ids)


@router.post("/{squad_id}/members",
          summary="Join a squad",
          description="Adds the authenticated user to a squad that is not full or private.",
          response_model=SquadRead)
def join_squad(squad_id: str = Path(..., description="Unique identifier of the squad"),
               current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        member_ids = get_member_ids(session, squad.id)

        if current_user.id in member_ids:
            raise HTTPException(status_code=400, detail="User is already a member")
        if len(member_ids) >= squad.max_members:
            raise HTTPException(status_code=400, detail="Squad is full")
        if squad.visibility == Visibility.PRIVATE:
            raise HTTPException(status_code=403, detail="Squad is private")

        session.add(SquadMember(squad_id=squad.id, user_id=current_user.id))
        squad.updated_at = utc_now()
        session.add(squad)
        session.commit()
        session.refresh(squad)
        return to_squad_read(squad, member_ids + [current_user.id])


@router.delete("/{squad_id}/members/me",
            summary="Leave a squad",
            description="Removes the authenticated user from a squad.")
def leave_squad(squad_id: str = Path(..., description="Unique identifier of the squad"),
                current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        membership = session.exec(
            select(SquadMember)
            .where(SquadMember.squad_id == squad.id)
            .where(SquadMember.user_id == current_user.id)
        ).first()
        if not membership:
            raise HTTPException(status_code=400, detail="User is not a member")

        session.delete(membership)
        session.commit()
        return {"message": "Left squad successfully"}


####################
#      Goals       #
####################

@router.get("/{squad_id}/goals",
         summary="List squad goals",
         description="Retrieves the goals of a squad with their current progress.",
         response_model=List[GoalRead])
def list_goals(squad_id: str = Path(..., description="Unique identifier of the squad"),
               current_user: User = Depends(get_current_user_dep)):
    now = utc_now()
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        require_member(session, squad, current_user)

        rows = session.exec(
            select(SquadGoal).where(SquadGoal.squad_id == squad.id).order_by(SquadGoal.created_at)
        ).all()
        return [to_goal_read(row, row.to_entity(), now) for row in rows]


@router.post("/{squad_id}/goals",
          status_code=201,
          summary="Add a squad goal",
          description="Adds a goal to a squad. Only the squad creator can add goals.",
          response_model=GoalRead)
def add_goal(squad_id: str = Path(..., description="Unique identifier of the squad"),
             goal_data: GoalCreate = Body(..., description="Goal to add"),
             current_user: User = Depends(get_current_user_dep)):
    now = utc_now()
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        require_creator(squad, current_user, "add goals")

        row = SquadGoal(
            squad_id=squad.id,
            type=goal_data.type,
            target=goal_data.target,
            individual_target=goal_data.individual_target,
            timeframe=goal_data.timeframe,
            start_date=to_naive_utc(goal_data.start_date),
            end_date=to_naive_utc(goal_data.end_date),
            description=goal_data.description
        )
        try:
            goal = row.to_entity()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        session.add(row)
        session.commit()
        session.refresh(row)
        return to_goal_read(row, goal, now)


@router.delete("/{squad_id}/goals/{goal_id}",
            summary="Delete a squad goal",
            description="Removes a goal from a squad. Only the squad creator can delete goals.")
def delete_goal(squad_id: str = Path(..., description="Unique identifier of the squad"),
                goal_id: str = Path(..., description="Unique identifier of the goal"),
                current_user: User = Depends(get_current_user_dep)):
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        require_creator(squad, current_user, "delete goals")
        goal = get_goal_or_404(session, squad.id, goal_id)

        session.delete(goal)
        session.commit()
        return {"message": "Goal deleted successfully"}


####################
#     Progress     #
####################

@router.post("/{squad_id}/progress",
          summary="Record progress",
          description="Sets the authenticated member's cumulative progress on a squad goal.",
          response_model=GoalRead)
def update_progress(squad_id: str = Path(..., description="Unique identifier of the squad"),
                    update: ProgressUpdate = Body(..., description="Goal and new cumulative progress value"),
                    current_user: User = Depends(get_current_user_dep)):
    now = utc_now()
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        require_member(session, squad, current_user)
        row = get_goal_or_404(session, squad.id, update.goal_id)

        goal = row.to_entity()
        record_progress(goal, current_user.id, update.progress, now)
        row.apply_entity(goal)

        squad.updated_at = now
        session.add(row)
        session.add(squad)
        session.commit()
        session.refresh(row)

        logger.info(f"Progress on goal {row.id} set to {update.progress} by {current_user.id}")
        return to_goal_read(row, goal, now)


@router.get("/{squad_id}/progress",
         summary="Get squad progress",
         description="Returns the squad's goal progress summary and activity rollups.",
         response_model=SquadProgressResponse)
def get_progress(squad_id: str = Path(..., description="Unique identifier of the squad"),
                 current_user: User = Depends(get_current_user_dep)):
    now = utc_now()
    with Session(get_database_engine()) as session:
        squad = get_squad_or_404(session, squad_id)
        member_ids = require_member(session, squad, current_user)

        rows = session.exec(
            select(SquadGoal).where(SquadGoal.squad_id == squad.id).order_by(SquadGoal.created_at)
        ).all()
        goals = [row.to_entity() for row in rows]

        summary = summarize(goals, member_ids)
        activity = squad_activity(goals, member_ids, now)

        return SquadProgressResponse(
            squad_id=squad.id,
            progress_summary=ProgressSummaryRead(
                total_goals=summary.total_goals,
                completed_goals=summary.completed_goals,
                on_track_goals=summary.on_track_goals,
                members_needing_help=summary.members_needing_help,
                average_progress=summary.average_progress
            ),
            activity=SquadActivityRead(
                total_applications=activity.total_applications,
                total_documents=activity.total_documents,
                total_reviews=activity.total_reviews,
                average_activity_score=activity.average_activity_score,
                activity_level=activity.activity_level.value,
                completion_percentage=activity.completion_percentage
            ),
            goals=[to_goal_read(row, goal, now) for row, goal in zip(rows, goals)]
        )
