from typing import Optional
import datetime
import decimal

from sqlalchemy import DateTime, ForeignKeyConstraint, Index, Integer, Numeric, PrimaryKeyConstraint, String, Text, UniqueConstraint, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.libs.formats.datetime import now as get_now


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = 'users'
    __table_args__ = (
        PrimaryKeyConstraint('id', name='users_pkey'),
        UniqueConstraint('email', name='users_email_key'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False)
    password: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default='STUDENT', server_default=text("'STUDENT'"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default='ACTIVE', server_default=text("'ACTIVE'"))
    avatar_url: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)

    enrollments: Mapped[list['Enrollments']] = relationship('Enrollments', back_populates='user')
    orders: Mapped[list['Orders']] = relationship('Orders', back_populates='user')


class Courses(Base):
    __tablename__ = 'courses'
    __table_args__ = (
        ForeignKeyConstraint(['instructor_id'], ['users.id'], ondelete='SET NULL', name='courses_instructor_id_fkey'),
        PrimaryKeyConstraint('id', name='courses_pkey'),
        UniqueConstraint('slug', name='courses_slug_key'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[decimal.Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default=text('0'))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default='DRAFT', server_default=text("'DRAFT'"))
    instructor_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)

    instructor: Mapped[Optional['User']] = relationship('User')
    lessons: Mapped[list['Lessons']] = relationship('Lessons', back_populates='course')
    enrollments: Mapped[list['Enrollments']] = relationship('Enrollments', back_populates='course')


class Lessons(Base):
    __tablename__ = 'lessons'
    __table_args__ = (
        ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE', name='lessons_course_id_fkey'),
        PrimaryKeyConstraint('id', name='lessons_pkey'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)

    course: Mapped['Courses'] = relationship('Courses', back_populates='lessons')


class Doubts(Base):
    __tablename__ = 'doubts'
    __table_args__ = (
        ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE', name='doubts_user_id_fkey'),
        ForeignKeyConstraint(['assigned_instructor_id'], ['users.id'], ondelete='SET NULL', name='doubts_assigned_instructor_id_fkey'),
        ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='SET NULL', name='doubts_course_id_fkey'),
        ForeignKeyConstraint(['lesson_id'], ['lessons.id'], ondelete='SET NULL', name='doubts_lesson_id_fkey'),
        PrimaryKeyConstraint('id', name='doubts_pkey'),
        Index('idx_doubts_status_created', 'status', 'created_at'),
        Index('idx_doubts_course', 'course_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default='OPEN', server_default=text("'OPEN'"))
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    assigned_instructor_id: Mapped[Optional[int]] = mapped_column(Integer)
    course_id: Mapped[Optional[int]] = mapped_column(Integer)
    lesson_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)

    user: Mapped['User'] = relationship('User', foreign_keys=[user_id])
    assigned_instructor: Mapped[Optional['User']] = relationship('User', foreign_keys=[assigned_instructor_id])
    course: Mapped[Optional['Courses']] = relationship('Courses')
    lesson: Mapped[Optional['Lessons']] = relationship('Lessons')
    tags: Mapped[list['DoubtTags']] = relationship('DoubtTags', back_populates='doubt', cascade='all, delete-orphan')
    messages: Mapped[list['DoubtMessages']] = relationship('DoubtMessages', back_populates='doubt', cascade='all, delete-orphan')


class DoubtTags(Base):
    __tablename__ = 'doubt_tags'
    __table_args__ = (
        ForeignKeyConstraint(['doubt_id'], ['doubts.id'], ondelete='CASCADE', name='doubt_tags_doubt_id_fkey'),
        PrimaryKeyConstraint('doubt_id', 'tag', name='doubt_tags_pkey'),
        Index('idx_doubt_tags_tag', 'tag'),
    )

    doubt_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tag: Mapped[str] = mapped_column(String(50), primary_key=True)

    doubt: Mapped['Doubts'] = relationship('Doubts', back_populates='tags')


class DoubtMessages(Base):
    __tablename__ = 'doubt_messages'
    __table_args__ = (
        ForeignKeyConstraint(['doubt_id'], ['doubts.id'], ondelete='CASCADE', name='doubt_messages_doubt_id_fkey'),
        ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE', name='doubt_messages_user_id_fkey'),
        PrimaryKeyConstraint('id', name='doubt_messages_pkey'),
        Index('idx_doubt_messages_doubt_sent', 'doubt_id', 'sent_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doubt_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sent_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)

    doubt: Mapped['Doubts'] = relationship('Doubts', back_populates='messages')
    user: Mapped['User'] = relationship('User')


class Orders(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE', name='orders_user_id_fkey'),
        ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE', name='orders_course_id_fkey'),
        PrimaryKeyConstraint('id', name='orders_pkey'),
        UniqueConstraint('gateway_order_id', name='orders_gateway_order_id_key'),
        Index('idx_orders_status_created', 'status', 'created_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default='PENDING', server_default=text("'PENDING'"))
    gateway_order_id: Mapped[str] = mapped_column(String, nullable=False)
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String)
    signature: Mapped[Optional[str]] = mapped_column(String)
    payment_gateway: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)

    user: Mapped['User'] = relationship('User', back_populates='orders')
    course: Mapped['Courses'] = relationship('Courses')


class Enrollments(Base):
    __tablename__ = 'enrollments'
    __table_args__ = (
        ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE', name='enrollments_user_id_fkey'),
        ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE', name='enrollments_course_id_fkey'),
        PrimaryKeyConstraint('id', name='enrollments_pkey'),
        UniqueConstraint('user_id', 'course_id', name='enrollments_user_id_course_id_key'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)
    enrolled_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, default=get_now)
    completed_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)

    user: Mapped['User'] = relationship('User', back_populates='enrollments')
    course: Mapped['Courses'] = relationship('Courses', back_populates='enrollments')
