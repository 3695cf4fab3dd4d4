"""
Providers — one pluggable implementation per capability, chosen at startup.

Modules:
    models        — capability enum, selection and timeout types
    aws           — shared boto3 client construction policy
    logging_sinks — console + Seq / CloudWatch Logs
    cache         — Redis distributed cache
    data_store    — DynamoDB / in-memory document store
    kms           — key-management client
    selector      — discriminator → registered factory
    registry      — sealed capability registry
"""
