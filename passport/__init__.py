"""
Passport: the gamification rule-and-quest engine behind the travel passport.

Entry points
------------
- passport.modules.gamification.GamificationEngine
- passport.modules.gamification.PassportService
- passport.modules.gamification.GamificationListener
"""

__version__ = "0.4.0"
