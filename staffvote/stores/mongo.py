import logging
from contextlib import contextmanager
from typing import Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from .. import schemas
from ..exceptions import ConflictError, NotFoundError, StorageError
from ..timeutils import utcnow
from .base import AdminStore, CampaignStore, StaffStore, Stores, VoteStore

logger = logging.getLogger(__name__)


# ---------------------------- Utility functions ----------------------------

def objid(oid) -> Optional[ObjectId]:
    if oid is None:  # ObjectId(None) would mint a fresh id
        return None
    try:
        return ObjectId(oid)
    except (InvalidId, TypeError):
        return None


@contextmanager
def mongo_errors():
    """Surface driver failures as StorageError; store-level errors pass through."""
    try:
        yield
    except PyMongoError as exc:
        raise StorageError("Database error") from exc


def to_staff(doc) -> schemas.StaffMember:
    return schemas.StaffMember(
        id=str(doc["_id"]),
        staff_id=doc["staff_id"],
        name=doc["name"],
        position=doc["position"],
        department=doc["department"],
        email=doc.get("email"),
        phone=doc.get("phone"),
        is_active=doc.get("is_active", True),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def to_campaign(doc) -> schemas.Campaign:
    return schemas.Campaign(
        id=str(doc["_id"]),
        title=doc["title"],
        description=doc.get("description"),
        start_date=doc["start_date"],
        end_date=doc["end_date"],
        is_active=doc.get("is_active", True),
        is_published=doc.get("is_published", False),
        created_at=doc.get("created_at"),
        updated_at=doc.get("updated_at"),
    )


def to_vote(doc) -> schemas.Vote:
    return schemas.Vote(
        id=str(doc["_id"]),
        campaign_id=str(doc["campaign_id"]),
        voter_staff_id=doc["voter_staff_id"],
        candidate_staff_id=doc["candidate_staff_id"],
        reason=doc["reason"],
        created_at=doc.get("created_at"),
    )


class MongoStore:
    def __init__(self, db: Database):
        self.db = db
        self.staff = db["staff"]
        self.campaigns = db["campaigns"]
        self.votes = db["votes"]
        self.admins = db["admins"]


# --------------------------------- Staff ---------------------------------

class MongoStaffStore(MongoStore, StaffStore):
    def create(self, staff_id, pin_hash, name, position, department, email=None, phone=None):
        now = utcnow()
        doc = {
            "staff_id": staff_id,
            "pin_hash": pin_hash,
            "name": name,
            "position": position,
            "department": department,
            "email": email,
            "phone": phone,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        with mongo_errors():
            try:
                result = self.staff.insert_one(doc)
            except DuplicateKeyError as exc:
                raise ConflictError("Staff ID already exists. Please choose a different ID.") from exc
        doc["_id"] = result.inserted_id
        return to_staff(doc)

    def get(self, id):
        oid = objid(id)
        if oid is None:
            return None
        with mongo_errors():
            doc = self.staff.find_one({"_id": oid})
        return to_staff(doc) if doc else None

    def get_by_staff_id(self, staff_id):
        with mongo_errors():
            doc = self.staff.find_one({"staff_id": staff_id})
        return to_staff(doc) if doc else None

    def get_pin_hash(self, staff_id):
        with mongo_errors():
            doc = self.staff.find_one({"staff_id": staff_id, "is_active": True})
        return doc["pin_hash"] if doc else None

    def list_all(self):
        with mongo_errors():
            return [to_staff(d) for d in self.staff.find({}).sort("name", ASCENDING)]

    def list_active(self, exclude_staff_id=None):
        query = {"is_active": True}
        if exclude_staff_id:
            query["staff_id"] = {"$ne": exclude_staff_id}
        with mongo_errors():
            return [to_staff(d) for d in self.staff.find(query).sort("name", ASCENDING)]

    def list_by_department(self, department):
        with mongo_errors():
            docs = self.staff.find({"department": department, "is_active": True}).sort("name", ASCENDING)
            return [to_staff(d) for d in docs]

    def _update(self, oid, fields):
        fields["updated_at"] = utcnow()
        with mongo_errors():
            result = self.staff.update_one({"_id": oid}, {"$set": fields})
            if result.matched_count == 0:
                return None
            return to_staff(self.staff.find_one({"_id": oid}))

    def update(self, id, name, position, department, email, phone, is_active):
        oid = objid(id)
        if oid is None:
            return None
        fields = {"name": name, "position": position, "department": department, "email": email, "phone": phone}
        if is_active is not None:
            fields["is_active"] = is_active
        return self._update(oid, fields)

    def set_pin_hash(self, id, pin_hash):
        oid = objid(id)
        if oid is None:
            return None
        return self._update(oid, {"pin_hash": pin_hash})

    def delete(self, id):
        oid = objid(id)
        with mongo_errors():
            doc = self.staff.find_one({"_id": oid}) if oid is not None else None
            if not doc:
                raise NotFoundError("Staff member not found")
            sid = doc["staff_id"]
            referencing = {"$or": [{"voter_staff_id": sid}, {"candidate_staff_id": sid}]}
            if self.votes.count_documents(referencing):
                raise ConflictError("Cannot delete staff member with existing votes. Deactivate instead.")
            self.staff.delete_one({"_id": oid})

    def stats(self):
        with mongo_errors():
            total = self.staff.count_documents({})
            active = self.staff.count_documents({"is_active": True})
            departments = len(self.staff.distinct("department"))
        return schemas.StaffStats(
            total_staff=total,
            active_staff=active,
            inactive_staff=total - active,
            departments=departments,
        )


# ------------------------------- Campaigns -------------------------------

class MongoCampaignStore(MongoStore, CampaignStore):
    def create(self, title, description, start_date, end_date):
        now = utcnow()
        doc = {
            "title": title,
            "description": description,
            "start_date": start_date,
            "end_date": end_date,
            "is_active": True,
            "is_published": False,
            "created_at": now,
            "updated_at": now,
        }
        with mongo_errors():
            result = self.campaigns.insert_one(doc)
        doc["_id"] = result.inserted_id
        return to_campaign(doc)

    def get(self, id):
        oid = objid(id)
        if oid is None:
            return None
        with mongo_errors():
            doc = self.campaigns.find_one({"_id": oid})
        return to_campaign(doc) if doc else None

    def _update(self, oid, fields):
        fields["updated_at"] = utcnow()
        with mongo_errors():
            result = self.campaigns.update_one({"_id": oid}, {"$set": fields})
            if result.matched_count == 0:
                return None
            return to_campaign(self.campaigns.find_one({"_id": oid}))

    def update(self, id, title, description, start_date, end_date, is_active):
        oid = objid(id)
        if oid is None:
            return None
        fields = {"title": title, "description": description, "start_date": start_date, "end_date": end_date}
        if is_active is not None:
            fields["is_active"] = is_active
        return self._update(oid, fields)

    def set_published(self, id, is_published):
        oid = objid(id)
        if oid is None:
            return None
        return self._update(oid, {"is_published": is_published})

    def delete(self, id):
        oid = objid(id)
        message = "Cannot delete campaign with existing votes. Deactivate instead."
        with mongo_errors():
            doc = self.campaigns.find_one({"_id": oid}) if oid is not None else None
            if not doc:
                raise NotFoundError("Campaign not found")
            if self.votes.count_documents({"campaign_id": oid}):
                raise ConflictError(message)
            self.campaigns.delete_one({"_id": oid})
            # A vote inserted between the count and the delete: put the campaign back
            if self.votes.count_documents({"campaign_id": oid}):
                self.campaigns.insert_one(doc)
                logger.warning(f"Campaign {id} delete lost a race with a vote insert; restored")
                raise ConflictError(message)

    def list_all(self):
        with mongo_errors():
            docs = self.campaigns.find({}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            return [to_campaign(d) for d in docs]

    def list_votable(self, now):
        query = {
            "is_active": True,
            "is_published": True,
            "start_date": {"$lte": now},
            "end_date": {"$gte": now},
        }
        with mongo_errors():
            docs = self.campaigns.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            return [to_campaign(d) for d in docs]


# --------------------------------- Votes ---------------------------------

class MongoVoteStore(MongoStore, VoteStore):
    def create(self, campaign_id, voter_staff_id, candidate_staff_id, reason):
        oid = objid(campaign_id)
        if oid is None:
            raise NotFoundError("Campaign not found")
        doc = {
            "campaign_id": oid,
            "voter_staff_id": voter_staff_id,
            "candidate_staff_id": candidate_staff_id,
            "reason": reason,
            "created_at": utcnow(),
        }
        with mongo_errors():
            try:
                result = self.votes.insert_one(doc)
            except DuplicateKeyError as exc:
                raise ConflictError("You have already voted in this campaign") from exc
            # The campaign may have been deleted after the caller checked it
            if self.campaigns.count_documents({"_id": oid}) == 0:
                self.votes.delete_one({"_id": result.inserted_id})
                raise NotFoundError("Campaign not found")
        doc["_id"] = result.inserted_id
        return to_vote(doc)

    def find(self, campaign_id, voter_staff_id):
        oid = objid(campaign_id)
        if oid is None:
            return None
        with mongo_errors():
            doc = self.votes.find_one({"campaign_id": oid, "voter_staff_id": voter_staff_id})
        return to_vote(doc) if doc else None

    def get_for_voter(self, vote_id, voter_staff_id):
        oid = objid(vote_id)
        if oid is None:
            return None
        with mongo_errors():
            doc = self.votes.find_one({"_id": oid, "voter_staff_id": voter_staff_id})
        return to_vote(doc) if doc else None

    def amend(self, vote_id, candidate_staff_id, reason):
        oid = objid(vote_id)
        if oid is None:
            return None
        with mongo_errors():
            result = self.votes.update_one(
                {"_id": oid},
                {"$set": {"candidate_staff_id": candidate_staff_id, "reason": reason}},
            )
            if result.matched_count == 0:
                return None
            return to_vote(self.votes.find_one({"_id": oid}))

    def my_vote(self, campaign_id, voter_staff_id):
        oid = objid(campaign_id)
        if oid is None:
            return None
        with mongo_errors():
            doc = self.votes.find_one({"campaign_id": oid, "voter_staff_id": voter_staff_id})
            if not doc:
                return None
            campaign = self.campaigns.find_one({"_id": oid}) or {}
            candidate = self.staff.find_one({"staff_id": doc["candidate_staff_id"]}) or {}
        return schemas.MyVote(
            **to_vote(doc).model_dump(),
            campaign_title=campaign.get("title"),
            candidate_name=candidate.get("name"),
            candidate_position=candidate.get("position"),
            candidate_department=candidate.get("department"),
        )

    def list_for_campaign(self, campaign_id):
        oid = objid(campaign_id)
        if oid is None:
            return []
        with mongo_errors():
            docs = list(self.votes.find({"campaign_id": oid}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]))
            campaign = self.campaigns.find_one({"_id": oid}) or {}
            involved = {d["voter_staff_id"] for d in docs} | {d["candidate_staff_id"] for d in docs}
            people = {s["staff_id"]: s for s in self.staff.find({"staff_id": {"$in": list(involved)}})}
        rows = []
        for doc in docs:
            voter = people.get(doc["voter_staff_id"], {})
            candidate = people.get(doc["candidate_staff_id"], {})
            rows.append(
                schemas.CampaignVote(
                    **to_vote(doc).model_dump(),
                    campaign_title=campaign.get("title"),
                    voter_name=voter.get("name"),
                    voter_position=voter.get("position"),
                    voter_department=voter.get("department"),
                    candidate_name=candidate.get("name"),
                    candidate_position=candidate.get("position"),
                    candidate_department=candidate.get("department"),
                )
            )
        return rows

    def tally(self, campaign_id):
        oid = objid(campaign_id)
        pipeline = [
            {"$match": {"campaign_id": oid}},
            {"$sort": {"_id": 1}},
            {"$group": {"_id": "$candidate_staff_id", "count": {"$sum": 1}, "reasons": {"$push": "$reason"}}},
        ]
        with mongo_errors():
            grouped = {row["_id"]: row for row in self.votes.aggregate(pipeline)} if oid is not None else {}
            active = list(self.staff.find({"is_active": True}))
        rows = [
            schemas.TallyRow(
                staff_id=s["staff_id"],
                name=s["name"],
                position=s["position"],
                department=s["department"],
                vote_count=grouped.get(s["staff_id"], {}).get("count", 0),
                reasons=grouped.get(s["staff_id"], {}).get("reasons", []),
            )
            for s in active
        ]
        rows.sort(key=lambda r: (-r.vote_count, r.name))
        return rows

    def stats(self, campaign_id):
        oid = objid(campaign_id)
        query = {"campaign_id": oid}
        with mongo_errors():
            total_votes = self.votes.count_documents(query) if oid is not None else 0
            unique_voters = len(self.votes.distinct("voter_staff_id", query)) if oid is not None else 0
            candidates = len(self.votes.distinct("candidate_staff_id", query)) if oid is not None else 0
            total_staff = self.staff.count_documents({"is_active": True})
        return schemas.CampaignStats(
            total_votes=total_votes,
            unique_voters=unique_voters,
            candidates=candidates,
            total_staff=total_staff,
        )


# --------------------------------- Admins ---------------------------------

class MongoAdminStore(MongoStore, AdminStore):
    def create(self, username, password_hash, email=None):
        doc = {
            "username": username,
            "password_hash": password_hash,
            "email": email,
            "is_active": True,
            "created_at": utcnow(),
        }
        with mongo_errors():
            try:
                result = self.admins.insert_one(doc)
            except DuplicateKeyError as exc:
                raise ConflictError("Admin username already exists") from exc
        return schemas.AdminAccount(
            id=str(result.inserted_id),
            username=username,
            email=email,
            is_active=True,
            created_at=doc["created_at"],
        )

    def get_by_username(self, username):
        with mongo_errors():
            doc = self.admins.find_one({"username": username})
        if not doc:
            return None
        return schemas.AdminAccount(
            id=str(doc["_id"]),
            username=doc["username"],
            email=doc.get("email"),
            is_active=doc.get("is_active", True),
            created_at=doc.get("created_at"),
        )

    def get_password_hash(self, username):
        with mongo_errors():
            doc = self.admins.find_one({"username": username, "is_active": True})
        return doc["password_hash"] if doc else None


def ensure_indexes(db: Database) -> None:
    """Unique indexes are what make staff ids and one-vote-per-campaign hold under races."""
    with mongo_errors():
        db["staff"].create_index("staff_id", unique=True)
        db["staff"].create_index("is_active")
        db["admins"].create_index("username", unique=True)
        db["campaigns"].create_index([("is_active", ASCENDING), ("is_published", ASCENDING)])
        db["votes"].create_index(
            [("campaign_id", ASCENDING), ("voter_staff_id", ASCENDING)],
            unique=True,
            name="uq_campaign_voter_vote",
        )
        db["votes"].create_index("candidate_staff_id")


def build_mongo_stores_from_db(db: Database) -> Stores:
    ensure_indexes(db)
    return Stores(
        staff=MongoStaffStore(db),
        campaigns=MongoCampaignStore(db),
        votes=MongoVoteStore(db),
        admins=MongoAdminStore(db),
    )


def build_mongo_stores(uri: str, database: str) -> Stores:
    client = MongoClient(uri)
    stores = build_mongo_stores_from_db(client[database])
    stores.close = client.close
    logger.info(f"MongoDB store ready on database {database!r}")
    return stores
