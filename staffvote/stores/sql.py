import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import and_, distinct, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker

from .. import models, schemas
from ..database import create_db_engine, create_session_factory, init_db
from ..exceptions import ConflictError, NotFoundError, StorageError
from ..timeutils import utcnow
from .base import AdminStore, CampaignStore, StaffStore, Stores, VoteStore

logger = logging.getLogger(__name__)


# ---------------- Helpers ----------------
def _pk(value) -> Optional[int]:
    """Parse an API id into a primary key; None for anything that can't be one."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _staff(row: models.Staff) -> schemas.StaffMember:
    return schemas.StaffMember(
        id=str(row.id),
        staff_id=row.staff_id,
        name=row.name,
        position=row.position,
        department=row.department,
        email=row.email,
        phone=row.phone,
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _campaign(row: models.Campaign) -> schemas.Campaign:
    return schemas.Campaign(
        id=str(row.id),
        title=row.title,
        description=row.description,
        start_date=row.start_date,
        end_date=row.end_date,
        is_active=row.is_active,
        is_published=row.is_published,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _vote(row: models.Vote) -> schemas.Vote:
    return schemas.Vote(
        id=str(row.id),
        campaign_id=str(row.campaign_id),
        voter_staff_id=row.voter_staff_id,
        candidate_staff_id=row.candidate_staff_id,
        reason=row.reason,
        created_at=row.created_at,
    )


class SqlStore:
    """Shared session handling: one session and one transaction per store call."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _scope(self, map_integrity: bool = False) -> Iterator[Session]:
        """
        With map_integrity the caller translates IntegrityError itself;
        otherwise a constraint violation is a StorageError like any other.
        """
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if map_integrity:
                raise
            raise StorageError("Database constraint violated") from exc
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Database error") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


# ---------------- Staff ----------------
class SqlStaffStore(SqlStore, StaffStore):
    def create(self, staff_id, pin_hash, name, position, department, email=None, phone=None):
        try:
            with self._scope(map_integrity=True) as db:
                row = models.Staff(
                    staff_id=staff_id,
                    pin_hash=pin_hash,
                    name=name,
                    position=position,
                    department=department,
                    email=email,
                    phone=phone,
                )
                db.add(row)
                db.flush()
                return _staff(row)
        except IntegrityError as exc:
            raise ConflictError("Staff ID already exists. Please choose a different ID.") from exc

    def get(self, id):
        pk = _pk(id)
        if pk is None:
            return None
        with self._scope() as db:
            row = db.get(models.Staff, pk)
            return _staff(row) if row else None

    def get_by_staff_id(self, staff_id):
        with self._scope() as db:
            row = db.query(models.Staff).filter(models.Staff.staff_id == staff_id).first()
            return _staff(row) if row else None

    def get_pin_hash(self, staff_id):
        with self._scope() as db:
            row = (
                db.query(models.Staff)
                .filter(models.Staff.staff_id == staff_id, models.Staff.is_active.is_(True))
                .first()
            )
            return row.pin_hash if row else None

    def list_all(self):
        with self._scope() as db:
            return [_staff(r) for r in db.query(models.Staff).order_by(models.Staff.name).all()]

    def list_active(self, exclude_staff_id=None):
        with self._scope() as db:
            query = db.query(models.Staff).filter(models.Staff.is_active.is_(True))
            if exclude_staff_id:
                query = query.filter(models.Staff.staff_id != exclude_staff_id)
            return [_staff(r) for r in query.order_by(models.Staff.name).all()]

    def list_by_department(self, department):
        with self._scope() as db:
            rows = (
                db.query(models.Staff)
                .filter(models.Staff.department == department, models.Staff.is_active.is_(True))
                .order_by(models.Staff.name)
                .all()
            )
            return [_staff(r) for r in rows]

    def update(self, id, name, position, department, email, phone, is_active):
        pk = _pk(id)
        if pk is None:
            return None
        with self._scope() as db:
            row = db.get(models.Staff, pk)
            if not row:
                return None
            row.name = name
            row.position = position
            row.department = department
            row.email = email
            row.phone = phone
            if is_active is not None:
                row.is_active = is_active
            db.flush()
            return _staff(row)

    def set_pin_hash(self, id, pin_hash):
        pk = _pk(id)
        if pk is None:
            return None
        with self._scope() as db:
            row = db.get(models.Staff, pk)
            if not row:
                return None
            row.pin_hash = pin_hash
            db.flush()
            return _staff(row)

    def delete(self, id):
        pk = _pk(id)
        try:
            with self._scope(map_integrity=True) as db:
                row = db.get(models.Staff, pk) if pk is not None else None
                if not row:
                    raise NotFoundError("Staff member not found")
                referenced = (
                    db.query(models.Vote)
                    .filter(
                        or_(
                            models.Vote.voter_staff_id == row.staff_id,
                            models.Vote.candidate_staff_id == row.staff_id,
                        )
                    )
                    .count()
                )
                if referenced:
                    raise ConflictError("Cannot delete staff member with existing votes. Deactivate instead.")
                db.delete(row)
                db.flush()
        except IntegrityError as exc:
            raise ConflictError("Cannot delete staff member with existing votes. Deactivate instead.") from exc

    def stats(self):
        with self._scope() as db:
            total = db.query(models.Staff).count()
            active = db.query(models.Staff).filter(models.Staff.is_active.is_(True)).count()
            departments = db.query(func.count(distinct(models.Staff.department))).scalar() or 0
            return schemas.StaffStats(
                total_staff=total,
                active_staff=active,
                inactive_staff=total - active,
                departments=departments,
            )


# ---------------- Campaigns ----------------
class SqlCampaignStore(SqlStore, CampaignStore):
    def create(self, title, description, start_date, end_date):
        with self._scope() as db:
            row = models.Campaign(
                title=title,
                description=description,
                start_date=start_date,
                end_date=end_date,
                is_active=True,
                is_published=False,
            )
            db.add(row)
            db.flush()
            return _campaign(row)

    def get(self, id):
        pk = _pk(id)
        if pk is None:
            return None
        with self._scope() as db:
            row = db.get(models.Campaign, pk)
            return _campaign(row) if row else None

    def update(self, id, title, description, start_date, end_date, is_active):
        pk = _pk(id)
        if pk is None:
            return None
        with self._scope() as db:
            row = db.get(models.Campaign, pk)
            if not row:
                return None
            row.title = title
            row.description = description
            row.start_date = start_date
            row.end_date = end_date
            if is_active is not None:
                row.is_active = is_active
            db.flush()
            return _campaign(row)

    def set_published(self, id, is_published):
        pk = _pk(id)
        if pk is None:
            return None
        with self._scope() as db:
            row = db.get(models.Campaign, pk)
            if not row:
                return None
            row.is_published = is_published
            db.flush()
            return _campaign(row)

    def delete(self, id):
        pk = _pk(id)
        # The vote count and the delete share one transaction; the RESTRICT
        # foreign key on votes.campaign_id rejects whichever side loses a race.
        try:
            with self._scope(map_integrity=True) as db:
                row = db.get(models.Campaign, pk) if pk is not None else None
                if not row:
                    raise NotFoundError("Campaign not found")
                if db.query(models.Vote).filter(models.Vote.campaign_id == pk).count():
                    raise ConflictError("Cannot delete campaign with existing votes. Deactivate instead.")
                db.delete(row)
                db.flush()
        except IntegrityError as exc:
            raise ConflictError("Cannot delete campaign with existing votes. Deactivate instead.") from exc

    def list_all(self):
        with self._scope() as db:
            rows = (
                db.query(models.Campaign)
                .order_by(models.Campaign.created_at.desc(), models.Campaign.id.desc())
                .all()
            )
            return [_campaign(r) for r in rows]

    def list_votable(self, now: datetime):
        with self._scope() as db:
            rows = (
                db.query(models.Campaign)
                .filter(
                    models.Campaign.is_active.is_(True),
                    models.Campaign.is_published.is_(True),
                    models.Campaign.start_date <= now,
                    models.Campaign.end_date >= now,
                )
                .order_by(models.Campaign.created_at.desc(), models.Campaign.id.desc())
                .all()
            )
            return [_campaign(r) for r in rows]


# ---------------- Votes ----------------
class SqlVoteStore(SqlStore, VoteStore):
    def create(self, campaign_id, voter_staff_id, candidate_staff_id, reason):
        pk = _pk(campaign_id)
        if pk is None:
            raise NotFoundError("Campaign not found")
        try:
            with self._scope(map_integrity=True) as db:
                row = models.Vote(
                    campaign_id=pk,
                    voter_staff_id=voter_staff_id,
                    candidate_staff_id=candidate_staff_id,
                    reason=reason,
                    created_at=utcnow(),
                )
                db.add(row)
                db.flush()
                return _vote(row)
        except IntegrityError as exc:
            # Unique (campaign, voter), the campaign foreign key, or a staff foreign key
            with self._scope() as db:
                campaign_exists = db.get(models.Campaign, pk) is not None
            if not campaign_exists:
                raise NotFoundError("Campaign not found") from exc
            if self.find(campaign_id, voter_staff_id) is not None:
                raise ConflictError("You have already voted in this campaign") from exc
            raise StorageError("Database constraint violated") from exc

    def find(self, campaign_id, voter_staff_id):
        pk = _pk(campaign_id)
        if pk is None:
            return None
        with self._scope() as db:
            row = (
                db.query(models.Vote)
                .filter(models.Vote.campaign_id == pk, models.Vote.voter_staff_id == voter_staff_id)
                .first()
            )
            return _vote(row) if row else None

    def get_for_voter(self, vote_id, voter_staff_id):
        pk = _pk(vote_id)
        if pk is None:
            return None
        with self._scope() as db:
            row = (
                db.query(models.Vote)
                .filter(models.Vote.id == pk, models.Vote.voter_staff_id == voter_staff_id)
                .first()
            )
            return _vote(row) if row else None

    def amend(self, vote_id, candidate_staff_id, reason):
        pk = _pk(vote_id)
        if pk is None:
            return None
        with self._scope() as db:
            row = db.get(models.Vote, pk)
            if not row:
                return None
            row.candidate_staff_id = candidate_staff_id
            row.reason = reason
            db.flush()
            return _vote(row)

    def my_vote(self, campaign_id, voter_staff_id):
        pk = _pk(campaign_id)
        if pk is None:
            return None
        with self._scope() as db:
            found = (
                db.query(models.Vote, models.Campaign, models.Staff)
                .join(models.Campaign, models.Vote.campaign_id == models.Campaign.id)
                .join(models.Staff, models.Vote.candidate_staff_id == models.Staff.staff_id)
                .filter(models.Vote.campaign_id == pk, models.Vote.voter_staff_id == voter_staff_id)
                .first()
            )
            if not found:
                return None
            vote, campaign, candidate = found
            return schemas.MyVote(
                **_vote(vote).model_dump(),
                campaign_title=campaign.title,
                candidate_name=candidate.name,
                candidate_position=candidate.position,
                candidate_department=candidate.department,
            )

    def list_for_campaign(self, campaign_id):
        pk = _pk(campaign_id)
        if pk is None:
            return []
        voter = aliased(models.Staff)
        candidate = aliased(models.Staff)
        with self._scope() as db:
            rows = (
                db.query(models.Vote, models.Campaign.title, voter, candidate)
                .join(models.Campaign, models.Vote.campaign_id == models.Campaign.id)
                .join(voter, models.Vote.voter_staff_id == voter.staff_id)
                .join(candidate, models.Vote.candidate_staff_id == candidate.staff_id)
                .filter(models.Vote.campaign_id == pk)
                .order_by(models.Vote.created_at.desc(), models.Vote.id.desc())
                .all()
            )
            return [
                schemas.CampaignVote(
                    **_vote(v).model_dump(),
                    campaign_title=title,
                    voter_name=vs.name,
                    voter_position=vs.position,
                    voter_department=vs.department,
                    candidate_name=cs.name,
                    candidate_position=cs.position,
                    candidate_department=cs.department,
                )
                for v, title, vs, cs in rows
            ]

    def tally(self, campaign_id):
        pk = _pk(campaign_id)
        with self._scope() as db:
            vote_count = func.count(models.Vote.id).label("vote_count")
            counted = (
                db.query(models.Staff, vote_count)
                .outerjoin(
                    models.Vote,
                    and_(
                        models.Vote.candidate_staff_id == models.Staff.staff_id,
                        models.Vote.campaign_id == pk,
                    ),
                )
                .filter(models.Staff.is_active.is_(True))
                .group_by(models.Staff.id)
                .all()
            )
            reasons = defaultdict(list)
            if pk is not None:
                votes = (
                    db.query(models.Vote.candidate_staff_id, models.Vote.reason)
                    .filter(models.Vote.campaign_id == pk)
                    .order_by(models.Vote.id)
                )
                for candidate_staff_id, reason in votes:
                    reasons[candidate_staff_id].append(reason)
            rows = [
                schemas.TallyRow(
                    staff_id=staff.staff_id,
                    name=staff.name,
                    position=staff.position,
                    department=staff.department,
                    vote_count=count,
                    reasons=reasons.get(staff.staff_id, []),
                )
                for staff, count in counted
            ]
        # Sorted here so ties break by code point whatever the database collation
        rows.sort(key=lambda r: (-r.vote_count, r.name))
        return rows

    def stats(self, campaign_id):
        pk = _pk(campaign_id)
        with self._scope() as db:
            total_votes, unique_voters, candidates = (
                db.query(
                    func.count(models.Vote.id),
                    func.count(distinct(models.Vote.voter_staff_id)),
                    func.count(distinct(models.Vote.candidate_staff_id)),
                )
                .filter(models.Vote.campaign_id == pk)
                .one()
            )
            total_staff = db.query(models.Staff).filter(models.Staff.is_active.is_(True)).count()
            return schemas.CampaignStats(
                total_votes=total_votes,
                unique_voters=unique_voters,
                candidates=candidates,
                total_staff=total_staff,
            )


# ---------------- Admins ----------------
class SqlAdminStore(SqlStore, AdminStore):
    def create(self, username, password_hash, email=None):
        try:
            with self._scope(map_integrity=True) as db:
                row = models.Admin(username=username, password_hash=password_hash, email=email)
                db.add(row)
                db.flush()
                return schemas.AdminAccount(
                    id=str(row.id),
                    username=row.username,
                    email=row.email,
                    is_active=row.is_active,
                    created_at=row.created_at,
                )
        except IntegrityError as exc:
            raise ConflictError("Admin username already exists") from exc

    def get_by_username(self, username):
        with self._scope() as db:
            row = db.query(models.Admin).filter(models.Admin.username == username).first()
            if not row:
                return None
            return schemas.AdminAccount(
                id=str(row.id),
                username=row.username,
                email=row.email,
                is_active=row.is_active,
                created_at=row.created_at,
            )

    def get_password_hash(self, username):
        with self._scope() as db:
            row = (
                db.query(models.Admin)
                .filter(models.Admin.username == username, models.Admin.is_active.is_(True))
                .first()
            )
            return row.password_hash if row else None


def build_sql_stores(url: str) -> Stores:
    engine = create_db_engine(url)
    init_db(engine)
    session_factory = create_session_factory(engine)
    logger.info(f"SQL store ready on {engine.url.render_as_string(hide_password=True)}")
    return Stores(
        staff=SqlStaffStore(session_factory),
        campaigns=SqlCampaignStore(session_factory),
        votes=SqlVoteStore(session_factory),
        admins=SqlAdminStore(session_factory),
        close=engine.dispose,
    )
