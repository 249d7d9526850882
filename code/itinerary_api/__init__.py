"""Itinerary API: asynchronous travel-plan generation jobs."""
