# External collaborators: document stores, LLM backend, observability.
# Import directly from submodules:
#   from itinerary_api.integrations.firestore_store import FirestoreDocumentStore
#   from itinerary_api.integrations.llm_client      import OpenAIItineraryGenerator
