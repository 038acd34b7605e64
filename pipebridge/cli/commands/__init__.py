"""pipebridge CLI subcommands."""
