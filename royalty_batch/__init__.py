"""
royalty_batch -- Background execution for royalty runs.

Runs queued calculations and the stuck-run sweep outside the request
path.  A run queued with ``RoyaltyRunOrchestrator.request_calculation`` is
PROCESSING without an owner; the worker claims it, calculates it and
commits.  Callers poll the run status.

Architecture:
    royalty_batch/ is a top-level package.  Nothing in royalty_kernel,
    royalty_engines or royalty_services imports from royalty_batch.

Invariants:
    - SAVEPOINT isolation per item: one failing run does not abort the
      others in the same cycle.
    - Clock injection: no direct ``datetime.now()`` calls.
    - A run is claimed before it is calculated, so two workers never
      compute the same run.
"""
