"""Generation orchestration.

- backoff: Jittered exponential delay between status checks
- state_machine: Pure poll lifecycle transitions and decisions
- scheduler: Timer adapter (asyncio or manual)
- poll_driver: In-process poll loop for one long-running generation
- reconciler: Terminal outcome -> view state + history
- session: Request-to-outcome facade owning one driver and view
- durable: Durable Functions rendition of the poll loop
"""
