"""Meeting scheduling -- models, schemas, repository and lifecycle coordinator.

Turns date/time/timezone form input into absolute instants, keeps the
participant roster consistent with the organizer invariant, and mirrors
each meeting to the organizer's Google Calendar on a best-effort basis.
"""
