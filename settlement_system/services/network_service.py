# settlement_system/services/network_service.py
"""
Sponsor tree service: upline walks, downline counts and sponsor assignment.
"""
from typing import List, Dict, Iterator, Tuple, Optional
from sqlalchemy.orm import Session
import logging

from config import error_result
from models import User
from settlement_system.config.programs import UPLINE_TRAVERSAL_CAP

logger = logging.getLogger(__name__)


class NetworkService:
    """Service for walking and maintaining the sponsor tree."""

    def __init__(self, session: Session):
        self.session = session

    def iterUpline(
            self,
            userId: int,
            maxDepth: int = UPLINE_TRAVERSAL_CAP
    ) -> Iterator[Tuple[int, User]]:
        """
        Yield (level, ancestor) pairs, level 1 being the direct sponsor.
        Stops at the root, at maxDepth, or when a cycle is detected.
        """
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return

        visited = {user.userID}
        nextSponsorId = user.sponsorID
        level = 1

        while nextSponsorId and level <= maxDepth:
            if nextSponsorId in visited:
                logger.error(f"Sponsor cycle detected above user {userId} at user {nextSponsorId}")
                return

            ancestor = self.session.query(User).filter_by(userID=nextSponsorId).first()
            if not ancestor:
                return

            visited.add(ancestor.userID)
            yield level, ancestor

            nextSponsorId = ancestor.sponsorID
            level += 1

    def directReferrals(self, userId: int) -> List[User]:
        return self.session.query(User).filter(
            User.sponsorID == userId
        ).order_by(User.userID).all()

    def countDownline(self, userId: int) -> int:
        """Count all users below userId, any depth (BFS in batches)."""
        count = 0
        queue = [userId]
        visited = {userId}

        while queue:
            batch, queue = queue[:50], queue[50:]
            referrals = self.session.query(User.userID).filter(
                User.sponsorID.in_(batch)
            ).all()

            for (referralId,) in referrals:
                if referralId in visited:
                    continue
                visited.add(referralId)
                count += 1
                queue.append(referralId)

        return count

    async def registerUser(
            self,
            username: str,
            sponsorId: Optional[int] = None,
            email: Optional[str] = None
    ) -> Dict:
        """Create a user, optionally under an existing sponsor."""
        if not username:
            return error_result("missing_fields")

        if sponsorId is not None:
            sponsor = self.session.query(User).filter_by(userID=sponsorId).first()
            if not sponsor:
                return error_result("invalid_sponsor")

        user = User(username=username, sponsorID=sponsorId, email=email)
        self.session.add(user)
        self.session.commit()

        logger.info(f"User {user.userID} ({username}) registered under sponsor {sponsorId}")
        return {"success": True, "userId": user.userID}

    async def assignSponsor(self, userId: int, sponsorId: Optional[int]) -> Dict:
        """Move a user under another sponsor, refusing anything that closes a cycle."""
        user = self.session.query(User).filter_by(userID=userId).first()
        if not user:
            return error_result("user_not_found")

        if sponsorId is not None:
            if sponsorId == userId:
                return error_result("sponsor_cycle")

            sponsor = self.session.query(User).filter_by(userID=sponsorId).first()
            if not sponsor:
                return error_result("invalid_sponsor")

            # The new sponsor must not sit below the user
            if self._isInDownline(userId, sponsorId):
                logger.warning(f"Refused sponsor {sponsorId} for user {userId}: cycle")
                return error_result("sponsor_cycle")

        previousSponsorId = user.sponsorID
        user.sponsorID = sponsorId
        self.session.commit()

        logger.info(f"User {userId} sponsor changed: {previousSponsorId} -> {sponsorId}")
        return {"success": True, "userId": userId, "sponsorId": sponsorId}

    def _isInDownline(self, rootId: int, candidateId: int) -> bool:
        """True when candidateId is rootId itself or any of its descendants."""
        # Full upline of the candidate, no depth cap: any depth closes a cycle
        visited = set()
        currentId = candidateId

        while currentId is not None and currentId not in visited:
            if currentId == rootId:
                return True
            visited.add(currentId)
            currentId = self.session.query(User.sponsorID).filter(
                User.userID == currentId
            ).scalar()

        return False
