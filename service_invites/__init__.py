"""
Invites Service package for the property access layer.

Owners issue invite tokens for a property; prospective tenants preview
them and redeem them to be linked to the property. The service enforces:
- One-way token storage with constant-time verification
- Exactly-N redemption under concurrency, idempotent per principal
- A persistent per-caller token bucket on every token operation
- Origin/credential classification before any of the above

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.tokens: Issuer, validator, acceptor, revoker and cleaner.
- app.ratelimit: Database-backed token bucket.
- app.persistence: Engine lifecycle and ORM tables.
- app.domain: Origin guard, principal resolution, clock.
- app.adapters: Auth service client and property-domain collaborators.
"""
