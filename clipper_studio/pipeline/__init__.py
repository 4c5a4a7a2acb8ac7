"""
Clip pipeline: transcript in, ranked candidates and rendered clips out.

Stages:
1. Analysis: score time windows with the configured strategy
   (transcript reasoning or frame sampling)
2. Validation: enforce duration, bounds and score invariants
3. Captions: clip-relative, wrapped subtitle tracks
4. Materialization: cut, resize and encode per platform preset
"""
