"""Territory claim map engine: geometry, viewport, claim rules and rendering for drop maps."""
