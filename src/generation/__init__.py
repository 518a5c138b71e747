"""Prompt building and Stable Diffusion image generation."""
