"""Master rules: stage 0 engine, learning from review decisions, administration."""
