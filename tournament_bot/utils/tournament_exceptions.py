"""
Custom exceptions for the tournament engine with user-friendly error messages.

Every error raised from an operation aborts the surrounding transaction; the
command layer shows ``user_message`` to whoever triggered the action.
"""

class TournamentError(Exception):
    """Base exception for tournament-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or f"❌ {message}"

class NotFound(TournamentError):
    """Raised when a tournament, match or player does not exist."""
    def __init__(self, kind: str, identifier):
        super().__init__(
            f"{kind} '{identifier}' not found",
            f"❌ {kind} `{identifier}` was not found."
        )
        self.kind = kind
        self.identifier = identifier

class InvalidState(TournamentError):
    """Raised when an action is attempted outside the required status."""
    pass

class Unauthorized(TournamentError):
    """Raised when the actor lacks the required role."""
    def __init__(self, action: str):
        super().__init__(
            f"Actor is not allowed to {action}",
            f"❌ You are not allowed to {action}."
        )

class AlreadyReported(TournamentError):
    """Raised on a duplicate match report."""
    def __init__(self, match_id: str):
        super().__init__(
            f"Match {match_id} has already been reported",
            f"❌ Match `{match_id}` has already been reported."
        )

class InsufficientBalance(TournamentError):
    """Raised when a join stake exceeds the user's Aura."""
    def __init__(self, required: int, available: int):
        super().__init__(
            f"Stake of {required} exceeds balance of {available}",
            f"❌ Joining costs **{required}** Aura but only **{available}** is available."
        )
        self.required = required
        self.available = available

class CapacityExceeded(TournamentError):
    """Raised when a tournament is already full."""
    def __init__(self, max_players: int):
        super().__init__(
            f"Tournament is full ({max_players} players)",
            f"❌ This tournament is full ({max_players} players)."
        )

class PairingImpossible(TournamentError):
    """Raised when Swiss backtracking finds no complete pairing."""
    def __init__(self, round_number: int, player_count: int):
        super().__init__(
            f"No valid pairing for round {round_number} with {player_count} players",
            f"❌ Round {round_number} could not be paired without rematches. The round was not advanced."
        )

class BracketInconsistent(TournamentError):
    """Raised when seed or feeder data for the bracket is missing or malformed."""
    pass

class MalformedDraw(TournamentError):
    """Raised when a draw declaration does not name exactly the two match players."""
    def __init__(self, match_id: str):
        super().__init__(
            f"Draw declaration for match {match_id} does not name both players",
            f"❌ A draw for match `{match_id}` must name exactly its two players."
        )
