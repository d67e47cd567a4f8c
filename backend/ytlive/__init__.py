"""YouTube live chat engagement engine."""
