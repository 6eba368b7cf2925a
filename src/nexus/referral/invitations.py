"""Email invitations sent by referrers."""

from nexus.accounts.exceptions import AccountNotFoundError
from nexus.logging_config import get_logger
from nexus.referral.constants import ReferralStatus
from nexus.referral.models import ReferralInvitation
from nexus.storage.db import Database, db
from nexus.storage.models import utcnow
from nexus.storage.repo import AccountRepository, ReferralInvitationRepository

logger = get_logger(__name__)


class ReferralInvitationService:
    """Tracks invitations from pending to activated."""

    def __init__(self, database: Database | None = None):
        self.database = database or db
        self.logger = get_logger(__name__)

    def create_invitation(self, referrer_id: str, email: str) -> ReferralInvitation:
        """Record a pending invitation for an email address.

        Re-inviting the same address returns the existing pending invitation.

        Raises:
            AccountNotFoundError: If the referrer does not exist
        """
        email = email.strip().lower()
        with self.database.session() as session:
            referrer = AccountRepository(session).get_by_id(referrer_id)
            if referrer is None:
                raise AccountNotFoundError(referrer_id)

            invitations = ReferralInvitationRepository(session)
            for existing in invitations.list_for_referrer(referrer_id, ReferralStatus.PENDING):
                if existing.invited_email == email:
                    return existing

            invitation = invitations.add(ReferralInvitation(
                referrer_account_id=referrer_id,
                referral_code=referrer.referral_code,
                invited_email=email,
                status=ReferralStatus.PENDING,
                invited_at=utcnow(),
            ))

        self.logger.info(
            "referral_invitation_created",
            referrer_id=referrer_id,
            code=invitation.referral_code,
        )
        return invitation

    def activate_invitations(
        self,
        referral_code: str,
        referred_account_id: str,
        points_earned: int,
    ) -> int:
        """Mark every pending invitation for a code as activated.

        Returns:
            Number of invitations activated
        """
        now = utcnow()
        with self.database.session() as session:
            pending = ReferralInvitationRepository(session).list_pending_for_code(referral_code)
            for invitation in pending:
                invitation.status = ReferralStatus.ACTIVATED
                invitation.activated_at = now
                invitation.referred_account_id = referred_account_id
                invitation.points_earned = points_earned

        if pending:
            self.logger.info(
                "referral_invitations_activated",
                code=referral_code,
                referred_account_id=referred_account_id,
                count=len(pending),
            )
        return len(pending)

    def get_activated_referrals(self, referrer_id: str) -> list[ReferralInvitation]:
        """Invitations that turned into referrals, newest first."""
        with self.database.session() as session:
            return ReferralInvitationRepository(session).list_for_referrer(
                referrer_id, ReferralStatus.ACTIVATED
            )

    def list_invitations(self, referrer_id: str) -> list[ReferralInvitation]:
        """All invitations sent by a referrer."""
        with self.database.session() as session:
            return ReferralInvitationRepository(session).list_for_referrer(referrer_id)
