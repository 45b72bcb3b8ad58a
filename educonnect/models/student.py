"""Student model."""
from sqlalchemy import JSON, Boolean, Column, ForeignKey, String, UniqueConstraint

from educonnect.models.base import BaseModel


class Student(BaseModel):
    """Student enrolled in one school.

    ``parent_ids`` holds the string ids of linked parent users. It has set
    semantics; mutate it only through ``add_parent``/``remove_parent`` so
    the change is a new list that the ORM notices.
    """

    __tablename__ = "students"

    school_id = Column(
        String(16),
        ForeignKey("schools.school_id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    student_id = Column(
        String(50),
        nullable=False
    )
    first_name = Column(
        String(100),
        nullable=False
    )
    last_name = Column(
        String(100),
        nullable=False
    )
    class_name = Column(
        String(50),
        nullable=True
    )
    is_active = Column(
        Boolean,
        nullable=False,
        default=True
    )
    parent_ids = Column(
        JSON,
        nullable=False,
        default=list
    )

    __table_args__ = (
        UniqueConstraint("school_id", "student_id", name="uq_students_school_student_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def add_parent(self, parent_id) -> bool:
        """Link a parent; returns False when already linked."""
        parent_id = str(parent_id)
        current = list(self.parent_ids or [])
        if parent_id in current:
            return False
        self.parent_ids = current + [parent_id]
        return True

    def remove_parent(self, parent_id) -> bool:
        parent_id = str(parent_id)
        current = list(self.parent_ids or [])
        if parent_id not in current:
            return False
        self.parent_ids = [pid for pid in current if pid != parent_id]
        return True

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, student_id={self.student_id}, school_id={self.school_id})>"
