from exam_engine.models.student import Student
from exam_engine.models.online_test import OnlineTest
from exam_engine.models.attempt import TestAttempt

__all__ = ["Student", "OnlineTest", "TestAttempt"]
