"""Records the engines read and the built-in workflow rule set."""
