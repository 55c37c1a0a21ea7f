"""
Exception Hierarchy for sangerconsensus

Errors are split by how the pipeline treats them:

- Fatal: ReadsetLoadError, NoValidReadsetsError. The run stops and no
  partial result is returned.
- Recoverable per readset: ConsensusBuildError, AlignmentError. The readset
  is recorded as failed and excluded downstream; the run continues.
- Degraded feature: TreeConstructionError. Captured into a TreeOutcome and
  the guide tree is reported as absent.
"""


class ConsensusPipelineError(Exception):
    """Base exception for sangerconsensus errors."""
    pass


class ReadsetLoadError(ConsensusPipelineError):
    """Input folder or read files could not be loaded."""
    pass


class NoValidReadsetsError(ConsensusPipelineError):
    """No readset survived the minimum read count filter."""
    pass


class ConsensusBuildError(ConsensusPipelineError):
    """Error while building the consensus for a single readset."""
    pass


class AlignmentError(ConsensusPipelineError):
    """Error during sequence alignment."""
    pass


class TreeConstructionError(ConsensusPipelineError):
    """Error while building a guide tree from a distance matrix."""
    pass


# Errors raised by a single readset build that must not abort the run
RECOVERABLE_BUILD_ERRORS = (ConsensusBuildError, AlignmentError)
