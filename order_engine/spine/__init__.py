"""
Order engine spine - NATS-based transport for events and jobs.

Lanes:
1. Order events  (plain pub/sub):         orders.updates.{order_id}
2. Execution jobs (JetStream work queue): jobs.orders

Both have in-memory implementations with the same contracts for tests and
single-process deployments.
"""
