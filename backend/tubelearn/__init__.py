"""TubeLearn: video-to-learning-material processing backend."""
