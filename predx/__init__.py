"""predx - validation and conversion of probabilistic forecast submissions."""
