# Task board: positional ordering, time tracking, authorization and realtime sync
#
# Components:
#   schema.py      - Data model (Task, TimeLog, Member, Project, TaskStatus)
#   positions.py   - Sparse position allocation and column rebalancing
#   timelog.py     - IN_PROGRESS time-log state machine, duration formatting
#   permissions.py - Assignee/admin mutation gate
#   validation.py  - Payload schemas for create, patch, list and bulk update
#   store.py       - SQLite persistence layer
#   events.py      - Broadcast channel with replay buffer and optional relay
#   service.py     - Authoritative task mutations
#   reconciler.py  - Client-side board state, optimistic drags, event merge
#   client.py      - HTTP client and client session with failure recovery
#   analytics.py   - Per-member time analytics
#   config.py      - YAML + environment configuration
