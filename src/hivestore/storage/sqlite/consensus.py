"""
SQLite Consensus Operations

Quorum proposals and their votes. The store owns the threshold policy:
evaluate_proposal() decides when a proposal resolves, and no write is
accepted once a proposal has reached a terminal status.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, List, Optional, Union

from hivestore.exceptions import ConstraintViolationError, DuplicateVoteError, InvalidTransitionError
from hivestore.logging_config import logger
from hivestore.schemas import TERMINAL_CONSENSUS_STATUSES, ConsensusProposal, ConsensusVote
from hivestore.storage.sqlite.config import DEFAULT_RECENT_PROPOSALS
from hivestore.storage.sqlite.persistence import SQLitePersistence, encode_json, to_timestamp


class SQLiteConsensusOperations:
    """
    Consensus proposal operations.

    State machine: pending -> achieved | failed | timeout. All three are
    terminal; resolved_at is written on that single transition.
    """

    def __init__(self, persistence: SQLitePersistence):
        self._db = persistence

    def create_proposal(
        self,
        swarm_id: str,
        proposal_data: Any,
        threshold_required: float,
        timeout: Union[datetime, timedelta, None] = None,
        proposal_type: str = "general",
        proposed_by: Optional[str] = None,
        proposal_id: Optional[str] = None,
    ) -> ConsensusProposal:
        """
        Open a proposal.

        Args:
            timeout: Absolute deadline, or a delay from now. None never times out

        Raises:
            ConstraintViolationError: Unknown swarm or threshold outside 0..1
        """
        proposal_id = proposal_id or f"proposal-{uuid.uuid4().hex[:12]}"
        if isinstance(timeout, timedelta):
            timeout_at = self._db.timestamp(timeout)
        elif isinstance(timeout, datetime):
            timeout_at = to_timestamp(timeout)
        else:
            timeout_at = None

        self._db.execute("create_consensus_proposal", (
            proposal_id, swarm_id, proposal_type, encode_json(proposal_data), proposed_by,
            threshold_required, self._db.timestamp(), timeout_at,
        ))
        logger.debug(f"Opened proposal {proposal_id} in swarm {swarm_id} (threshold {threshold_required})")
        return self.get(proposal_id)

    def get(self, proposal_id: str) -> Optional[ConsensusProposal]:
        row = self._db.fetchone("get_consensus_proposal", (proposal_id,))
        return ConsensusProposal.model_validate(row) if row else None

    def get_votes(self, proposal_id: str) -> List[ConsensusVote]:
        rows = self._db.fetchall("get_consensus_votes", (proposal_id,))
        return [ConsensusVote.model_validate(row) for row in rows]

    def list_recent(self, swarm_id: str, limit: int = DEFAULT_RECENT_PROPOSALS) -> List[ConsensusProposal]:
        rows = self._db.fetchall("get_recent_consensus", (swarm_id, limit))
        return [ConsensusProposal.model_validate(row) for row in rows]

    def submit_vote(
        self,
        proposal_id: str,
        agent_id: str,
        vote: bool,
        reason: Optional[str] = None,
    ) -> ConsensusProposal:
        """
        Record one agent's vote and add it to the tallies atomically.

        Returns:
            The proposal with updated tallies (not yet re-evaluated)

        Raises:
            KeyError: Unknown proposal
            InvalidTransitionError: Proposal is already terminal
            DuplicateVoteError: agent_id has already voted on it
        """
        with self._db.transaction():
            proposal = self._require(proposal_id)
            if proposal.is_terminal:
                raise InvalidTransitionError(proposal_id, proposal.status, "vote")
            try:
                self._db.execute("insert_consensus_vote", (
                    proposal_id, agent_id, int(vote), reason, self._db.timestamp(),
                ))
            except ConstraintViolationError as e:
                raise DuplicateVoteError(proposal_id, agent_id) from e
            self._db.execute("submit_consensus_vote", (int(vote), int(not vote), proposal_id))

        logger.debug(f"Vote on {proposal_id} by {agent_id}: {'for' if vote else 'against'}")
        return self.get(proposal_id)

    def update_status(self, proposal_id: str, status: str) -> ConsensusProposal:
        """
        Resolve a proposal to a terminal status.

        Raises:
            KeyError: Unknown proposal
            InvalidTransitionError: status is not terminal, or the proposal
                already is
        """
        with self._db.transaction():
            proposal = self._require(proposal_id)
            if status not in TERMINAL_CONSENSUS_STATUSES or proposal.is_terminal:
                raise InvalidTransitionError(proposal_id, proposal.status, status)
            self._db.execute("update_consensus_status", (status, self._db.timestamp(), proposal_id))

        logger.info(f"Proposal {proposal_id} resolved: {status}")
        return self.get(proposal_id)

    def evaluate_proposal(self, proposal_id: str, final: bool = False) -> ConsensusProposal:
        """
        Apply the threshold policy and resolve the proposal if it is decided.

        - achieved: votes_for / votes_total >= threshold_required
        - timeout: the clock has passed timeout_at without quorum
        - failed: final is set and neither of the above holds

        Otherwise the proposal stays pending. Terminal proposals are
        returned unchanged.

        Raises:
            KeyError: Unknown proposal
        """
        with self._db.transaction():
            proposal = self._require(proposal_id)
            if proposal.is_terminal:
                return proposal

            if proposal.votes_total and proposal.approval_ratio >= proposal.threshold_required:
                status = "achieved"
            elif proposal.timeout_at is not None and self._db.now() >= proposal.timeout_at:
                status = "timeout"
            elif final:
                status = "failed"
            else:
                return proposal

            return self.update_status(proposal_id, status)

    def expire_proposals(self) -> List[str]:
        """
        Evaluate every pending proposal whose deadline has passed.

        Proposals that reached quorum before the sweep resolve as achieved;
        the rest time out.

        Returns:
            Ids of proposals resolved by this call
        """
        rows = self._db.fetchall("list_expired_proposals", (self._db.timestamp(),))
        resolved = []
        for row in rows:
            proposal = self.evaluate_proposal(row["id"])
            if proposal.is_terminal:
                resolved.append(proposal.id)
        if resolved:
            logger.info(f"Resolved {len(resolved)} expired proposals")
        return resolved

    def _require(self, proposal_id: str) -> ConsensusProposal:
        proposal = self.get(proposal_id)
        if proposal is None:
            raise KeyError(f"Unknown consensus proposal: {proposal_id}")
        return proposal
