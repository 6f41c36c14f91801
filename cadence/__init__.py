"""
Cadence - adaptive spaced-repetition scheduling.

Decides, per learner and per item, when the item should next be reviewed
and how hard the next session should feel. Classic FSRS scheduling is
conditioned on three behavioural signals inferred from recent practice:

1. Flow - moment-to-moment engagement (cadence.adaptive.flow_detector)
2. Momentum & Confidence - emotional trend and per-topic mastery
3. Temporal Intelligence - circadian profile and cognitive load

The Orchestrator in cadence.engine wires them together per user.
"""

__version__ = "1.0.0"
