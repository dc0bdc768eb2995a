"""
Scorekeeper Service - match results and player ratings

Responsibilities:
- Match lifecycle (begin, report, dispute, finalize) with optimistic versioning
- Bayesian rating updates and the append-only rating history
- Tournament registration under capacity limits
- Live score fan-out to tournament and match viewers (SSE, optional redis relay)
"""
