"""
Operations Layer

Business logic that composes database access into complete tournament
workflows. Each public operation owns one transaction and either applies fully
or not at all.

Architecture:
- Database layer: Pure data access on a caller-supplied session
- Engines (tournament_bot.utils): Pure pairing, tiebreaker, bracket and prize logic
- Operations layer: Validation, state transitions and persistence
- Command layer: Discord integration and user interface

Modules:
- TournamentOperations: Lifecycle state machine (create through finish)
- MatchOperations: Result reporting and validation
- FinalizationOperations: Prize payout and lifetime stat aggregation
- UserOperations: Lifetime user records and Aura balance
- StatsLedger: Per-tournament stat changes and snapshots
"""
