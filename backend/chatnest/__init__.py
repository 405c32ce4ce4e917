"""ChatNest backend and room synchronizer.

ChatNest is a small multi-room chat service with an AI participant. The
server half stores rooms, profiles and messages and streams inserts to
subscribers; the client half (``chatnest.sync``) keeps one room's message
list consistent across the history load, live events and optimistic sends.

Modules:
    - store: DuckDB persistence, change feed and the rooms/messages API
    - auth: Username sessions and bearer-token dependencies
    - ai: Completion provider (OpenRouter) and the ask-gpt function
    - sync: Room view, message list and its collaborators
"""
