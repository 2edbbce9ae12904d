"""
Passport feature modules.

- shared: service/repository foundations, domain exceptions, formulas
- gamification: rule and quest engine
"""
