"""Pre-processing: mesh, materials and heat sources."""
