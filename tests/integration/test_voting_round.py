"""End-to-end estimation round through PokerService on a real database.

Dealer creates a session, three developers join, every story is voted,
revealed, completed or skipped, and the session closes itself.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from planpoker.service import PokerService
from planpoker.store.repository import Repositories

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class TestVotingRound:
    async def test_full_session(self, db_session: AsyncSession) -> None:
        svc = PokerService(Repositories(db_session))

        session = await svc.create_session(
            "Sprint 42", description="Checkout rework", acting_user="dana"
        )
        assert session.status == "pending"
        code = session.session_code
        assert code is not None

        for dev in ("amy", "bob", "cy"):
            await svc.join_session(code.lower(), dev)

        login = await svc.add_story(session.id, "Login form")
        cart = await svc.add_story(session.id, "Cart badge")
        legacy = await svc.add_story(session.id, "Legacy export")

        await svc.update_session(session.id, {"status": "active"}, acting_user="dana")
        assert session.started_at is not None
        assert session.dealer == "dana"

        # Round 1: disagreement, revote, then consensus.
        await svc.start_voting(login.id)
        await svc.cast_vote(session.id, login.id, "amy", "3")
        await svc.cast_vote(session.id, login.id, "bob", "8")
        revote = await svc.cast_vote(session.id, login.id, "bob", "5")
        assert revote.version == 2
        assert revote.revealed is False
        last = await svc.cast_vote(session.id, login.id, "cy", "5")
        assert last.revealed is True
        assert login.status == "revealed"

        stats = await svc.get_vote_stats(login.id)
        assert stats.total_votes == 3
        assert stats.vote_counts == {"3": 1, "5": 2}
        assert stats.median == 5.0
        assert stats.average == 4.33

        await svc.complete_voting(login.id, "5", login.vote_summary)
        assert login.final_estimate == "5"
        assert login.vote_summary == "3 of 3 participants voted"

        # Round 2: someone leaves mid-round, the remaining votes reveal.
        await svc.start_voting(cart.id)
        await svc.cast_vote(session.id, cart.id, "amy", "2")
        await svc.cast_vote(session.id, cart.id, "bob", "2")
        assert cart.status == "voting"
        await svc.leave_session(session.id, "cy")
        assert cart.status == "revealed"
        assert (await svc.get_vote_stats(cart.id)).consensus is True
        await svc.complete_voting(cart.id, "2")

        current = await svc.get_session(session.id)
        assert current is not None
        assert current.status == "active"
        assert current.completed_stories == 2

        # Last story is dropped; the session completes on its own.
        await svc.skip_story(legacy.id)
        assert session.status == "completed"
        assert session.completed_at is not None
        assert session.total_stories == 3
        assert session.completed_stories == 2
        assert session.consensus_rate == 67

        listed = await svc.list_sessions(status="completed")
        assert [s.id for s in listed] == [session.id]
