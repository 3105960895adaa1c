"""
White-crowned sparrow territory analysis.

Kernel home-range estimation, sample-size validation of the estimates,
Scaled Mass Index body condition and AICc model selection of territory
size. Run everything with ``territory-analysis`` (pipeline_runner.main).
"""

__version__ = "0.1.0"
