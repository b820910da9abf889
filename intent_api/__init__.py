"""Intent API: the CI-facing front door for PreviewEnvironment records."""
