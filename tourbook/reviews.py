from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from .clock import Clock, utc_now
from .errors import BadRequestError, DuplicateError, ForbiddenError, InvalidStateError, NotFoundError
from .models import BookingStatus, Caller, RegisteredUser, Review, Tour
from .storage import InMemoryEntityStore

logger = logging.getLogger(__name__)


def _validate_rating(rating: int) -> None:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise BadRequestError("rating must be an integer between 1 and 5", field="rating")


class ReviewService:
    """Reviews tied to completed bookings, and the tour rating they feed.

    The tour's ``rating`` and ``review_count`` are recomputed inside the same store lock as
    the review write that changes them.
    """

    def __init__(self, store: InMemoryEntityStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def create_review(
        self,
        *,
        tour_id: str,
        booking_id: str,
        caller: Caller,
        rating: int,
        comment: str,
    ) -> Review:
        _validate_rating(rating)
        if not comment.strip():
            raise BadRequestError("comment is required", field="comment")

        with self._store.lock:
            booking = self._store.bookings.get(booking_id)
            if not booking:
                raise NotFoundError("booking not found")
            if not isinstance(booking.owner, RegisteredUser) or booking.owner.user_id != caller.user_id:
                raise ForbiddenError("you can only review your own bookings")
            if booking.tour_id != tour_id:
                raise BadRequestError("booking does not belong to this tour", field="tour_id")
            if booking.status != BookingStatus.COMPLETED:
                raise InvalidStateError("you can only review completed tours")
            user_id = booking.owner.user_id
            existing = self._store.reviews.find(
                lambda r: r.tour_id == tour_id and r.user_id == user_id and r.booking_id == booking_id
            )
            if existing:
                raise DuplicateError("you have already reviewed this tour")

            now = self._clock()
            review = Review(
                id=f"rev_{uuid4().hex[:12]}",
                tour_id=tour_id,
                user_id=user_id,
                booking_id=booking_id,
                rating=rating,
                comment=comment.strip(),
                is_verified=True,
                created_at=now,
                updated_at=now,
            )
            self._store.reviews.insert(review)
            self._recompute_rating(tour_id)

        logger.info("Review created", extra={"review_id": review.id, "tour_id": tour_id, "booking_id": booking_id})
        return review

    def update_review(
        self,
        review_id: str,
        caller: Caller,
        *,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> Review:
        changes: dict[str, object] = {}
        if rating is not None:
            _validate_rating(rating)
            changes["rating"] = rating
        if comment is not None:
            if not comment.strip():
                raise BadRequestError("comment is required", field="comment")
            changes["comment"] = comment.strip()

        with self._store.lock:
            review = self._get(review_id)
            if review.user_id != caller.user_id:
                raise ForbiddenError("not authorized")
            updated = self._store.reviews.update(review.id, changes)
            if updated is None:
                raise NotFoundError("review not found")
            self._recompute_rating(review.tour_id)

        logger.info("Review updated", extra={"review_id": review.id, "tour_id": review.tour_id})
        return updated

    def delete_review(self, review_id: str, caller: Caller) -> None:
        with self._store.lock:
            review = self._get(review_id)
            if review.user_id != caller.user_id and not caller.is_admin:
                raise ForbiddenError("not authorized")
            self._store.reviews.delete(review.id)
            self._recompute_rating(review.tour_id)

        logger.info("Review deleted", extra={"review_id": review.id, "tour_id": review.tour_id})

    def list_tour_reviews(self, tour_id: str) -> list[Review]:
        reviews = self._store.reviews.find(lambda r: r.tour_id == tour_id)
        return sorted(reviews, key=lambda r: r.created_at, reverse=True)

    def list_my_reviews(self, caller: Caller) -> list[Review]:
        reviews = self._store.reviews.find(lambda r: r.user_id == caller.user_id)
        return sorted(reviews, key=lambda r: r.created_at, reverse=True)

    def _recompute_rating(self, tour_id: str) -> Optional[Tour]:
        ratings = [review.rating for review in self._store.reviews.find(lambda r: r.tour_id == tour_id)]
        average = sum(ratings) / len(ratings) if ratings else 0.0
        tour = self._store.tours.update(tour_id, {"rating": average, "review_count": len(ratings)})
        if tour is None:
            logger.warning("Rating recompute skipped for missing tour", extra={"tour_id": tour_id})
        return tour

    def _get(self, review_id: str) -> Review:
        review = self._store.reviews.get(review_id)
        if not review:
            raise NotFoundError("review not found")
        return review
