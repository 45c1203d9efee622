"""tfexec: Terraform batch executor for AWS Lambda.

Provides:
    - Capacity-bounded dispatch with Lambda self-invocation for overflow
    - Nested module discovery and checkout
    - Per-job credential issuance, S3 backend generation and environment assembly
    - Terraform subprocess supervision with job-tagged output
"""

__version__ = "1.0.0"
