"""Bootstrap: profile packs merged into the brain without clobbering user edits."""
