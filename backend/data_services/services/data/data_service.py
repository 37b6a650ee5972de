"""
Data Services — Sample Data Service
=====================================

What:  POST /data reseeds the sampleData table from the remote collection;
       GET /data pages through it 30 rows at a time.
How:   Thin service methods over the DataStore injectable. Routes, middleware
       and request validation come from the @openapi blocks below.
Who:   Discovered by the loader through the services/**/*_service.py
       convention.

@openapi
components:
  schemas:
    SuccessfulResponse:
      type: object
      required:
        - msg
        - status
      properties:
        msg:
          description: A success message to be used by the client.
          type: string
        status:
          description: A boolean value with response data status.
          type: boolean
          enum: [true]
        data:
          description: The payload of the response.
    GenericError:
      type: object
      required:
        - errorCode
        - errorMsg
      properties:
        errorCode:
          description: A string that quickly identifies the error.
          type: string
        errorMsg:
          description: A message that further identifies the error.
          type: string
        errorDetails:
          description: Additional information that can help troubleshoot the error.
          type: object
        requestId:
          description: Id of the request, also sent as the X-Request-ID header.
          type: string
"""


class InsertData:
    """Sample data endpoints."""

    dependencies = ("DataStore",)

    def __init__(self, context):
        self._api_server = context["api_server"]
        self._store = context["DataStore"]
        self._log = context["log"]("INSERT-SERVICE")

    async def create_new_data(self, request_helper, response_helper):
        """
        Reseed the table from the remote collection.

        @openapi
        /data:
          post:
            serviceMethod: InsertData.create_new_data
            serviceMiddlewares:
              - STANDARD.json
            security:
              - openIdConnect:
                  - create:data
            description: Fetch the remote collection and insert every record.
            tags: [data-services]
            requestBody:
              required: true
              content:
                application/json:
                  schema:
                    type: object
            responses:
              200:
                description: All records were fetched and their inserts have settled.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/SuccessfulResponse'
              400:
                description: The request was invalid or the remote fetch failed.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/GenericError'
              401:
                description: Missing or incorrect authorization.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/GenericError'
              403:
                description: The caller may not create data.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/GenericError'
        """
        self._log.info("Received request for creating new data: %s", request_helper.get_payload())
        try:
            summary = await self._store.seed_all()
        except Exception as e:
            self._log.error("Failed to create new data: %s", str(e))
            raise
        return {
            "status": True,
            "msg": "All Data has been Inserted.",
            "data": summary,
        }

    async def fetch_insert_data(self, request_helper, response_helper):
        """
        Return one page of rows ordered by id.

        @openapi
        /data:
          get:
            serviceMethod: InsertData.fetch_insert_data
            serviceMiddlewares:
              - STANDARD.json
            security:
              - openIdConnect:
                  - read:data
            description: Fetch one page (30 rows) of sample data ordered by id.
            tags: [data-services]
            parameters:
              - name: page
                in: query
                description: 1-based page number
                schema:
                  type: integer
                  minimum: 1
                  default: 1
            responses:
              200:
                description: The requested page; empty past the last row.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/SuccessfulResponse'
              400:
                description: The page parameter is not a positive integer.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/GenericError'
              401:
                description: Missing or incorrect authentication.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/GenericError'
              403:
                description: The caller may not read data.
                content:
                  application/json:
                    schema:
                      $ref: '#/components/schemas/GenericError'
        """
        params = request_helper.get_query_params()
        self._log.info("Received request for fetching data: %s", params)
        rows = await self._store.fetch_page(params.get("page", 1))
        return {"data": rows}
