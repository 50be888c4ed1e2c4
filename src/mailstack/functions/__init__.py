"""Lambda function sources shipped with the eventing stack."""
